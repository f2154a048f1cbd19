from macro_journal.services.habit_analyzer import analyze
from macro_journal.services.insight_engine import EvaluationResult, InsightEngine
from macro_journal.services.insight_runtime import InsightRuntime, InsightSessions
from macro_journal.services.session_tracker import SessionContext, SessionTracker

__all__ = ["analyze", "EvaluationResult", "InsightEngine", "InsightRuntime", "InsightSessions", "SessionContext", "SessionTracker"]
