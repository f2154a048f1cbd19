from macro_journal.models.entry import Entry
from macro_journal.models.notification import Notification
from macro_journal.models.push_token import PushToken
from macro_journal.models.setting import Setting

__all__ = [
    "Entry",
    "Notification",
    "PushToken",
    "Setting",
]
