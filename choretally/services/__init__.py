from choretally.services.analytics_service import AnalyticsService
from choretally.services.completion_service import CompletionLedger
from choretally.services.consequence_dispatcher import ConsequenceDispatcher, NullDispatcher
from choretally.services.period_finalizer import PeriodFinalizer
from choretally.services.period_result_service import PeriodResultStore
from choretally.services.statistics_service import StatisticsService


__all__ = [
    "AnalyticsService",
    "CompletionLedger",
    "ConsequenceDispatcher",
    "NullDispatcher",
    "PeriodFinalizer",
    "PeriodResultStore",
    "StatisticsService",
]
