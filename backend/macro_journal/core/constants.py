"""
Centralized constants for the insight engine (Encapsulate What Changes).

Notification titles double as dedup keys in the ledger, so change them here only.
"""

# Notification titles (ledger dedup keys)
WELCOME_TITLE = "Welcome to Daily Macro Journal!"
WELCOME_BODY = (
    "We're getting to know your eating habits—log your meals for 5 days "
    "to unlock personalized insights!"
)
LEARNING_COMPLETE_TITLE = "Learning Period Complete!"
LEARNING_COMPLETE_BODY = (
    "You've logged meals on 5 different days. Personalized insights and snack "
    "reminders are now unlocked!"
)
DAILY_MOTIVATION_TITLE = "Daily Motivation"
SNACK_TITLE = "Snack Time! 🍎"

# Settings keys (one row per user + key)
KEY_HAS_SENT_WELCOME = "hasSentWelcome"
KEY_DAILY_MOTIVATION = "hasSentDailyMotivation"
KEY_LEARNING_PERIOD_COMPLETE = "learningPeriodComplete"
KEY_FIRST_ENTRY_DATE = "firstEntryDate"
KEY_LAST_SNACK_REMINDER = "lastSnackReminder"
KEY_MACRO_GOALS = "macroGoals"
KEY_DAILY_REPORT = "dailyReport"
KEY_TIMEZONE = "timezone"

# Macro goal defaults (kcal and percent of calories)
DEFAULT_CALORIE_GOAL = 2000
DEFAULT_PROTEIN_PERCENT = 35
DEFAULT_FAT_PERCENT = 30
DEFAULT_CARB_PERCENT = 35
KCAL_PER_GRAM_PROTEIN = 4
KCAL_PER_GRAM_FAT = 9
KCAL_PER_GRAM_CARBS = 4

# Learning period / habit window
LEARNING_PERIOD_DAYS = 5
HABIT_WINDOW_DAYS = 30
HABIT_TOP_N = 3
DEFAULT_AVG_GAP_MINUTES = 180.0
DEFAULT_TYPICAL_MEAL_TIME = "12:00 PM"

# Snack reminder
SNACK_COOLDOWN_MINUTES = 30
SNACK_CHECK_INTERVAL_MINUTES = 30
DATE_ROLLOVER_CHECK_SECONDS = 60

# Retry policy for identity resolution and ledger loads
RETRY_MAX_ATTEMPTS = 5
RETRY_BASE_DELAY_SECONDS = 1.0

# Routes on which identity resolution is skipped (sign-in race)
AUTH_ROUTES = ("/login", "/logout")

# Text generation
SNACK_ENDPOINT = "/claude-snack"
REPORT_ENDPOINT = "/claude-report"
QUOTE_FALLBACK = "Keep pushing forward—you've got this!"
QUOTE_PROMPT = (
    "Generate a short, motivational quote (1-2 sentences) for a health and fitness app user "
    "to encourage them in their macro tracking journey. Keep it positive, concise, and "
    "inspiring, and do not include quotation marks around the quote."
)
REPORT_NO_ENTRIES = "Log your first meal to start tracking your macros!"
REPORT_FALLBACK = "Oops, couldn't generate your report—try again later!"
REPORT_ERROR = "Failed to generate your daily report. Please try again later."
SNACK_ERROR = "Couldn't fetch a snack suggestion right now. We'll try again later."
NOTIFY_PERMISSION_NOTE = (
    "Enable notifications on your device to get snack reminders as pop-ups. "
    "You'll still find them in your notifications list."
)

# Scheduler job id prefixes (one job per runtime; suffixed with the runtime id)
SNACK_JOB_PREFIX = "snack_check"
ROLLOVER_JOB_PREFIX = "date_rollover"
TOKEN_REFRESH_JOB_PREFIX = "token_refresh"
SESSIONS_SNACK_JOB_ID = "sessions_snack_check"
SESSIONS_ROLLOVER_JOB_ID = "sessions_date_rollover"

# Auth provider (Supabase GoTrue)
AUTH_TIMEOUT_SECONDS = 10.0
TOKEN_REFRESH_CHECK_SECONDS = 30
TOKEN_REFRESH_MARGIN_SECONDS = 60
