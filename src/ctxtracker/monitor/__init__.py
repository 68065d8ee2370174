"""Log monitoring: parsing, classification, scoring, and watching."""

from .classifier import Candidate, FactClassifier
from .parser import MalformedLog, estimate_tokens, parse_conversation_log, read_conversation_log
from .patterns import CategoryRule, PatternRegistry
from .pipeline import IngestionPipeline, IngestionResult, summarize_log
from .scorer import ImportanceScorer, StalenessDetector
from .watcher import BackgroundMonitor, DirectoryWatcher, WatchInitError

__all__ = [
    "BackgroundMonitor",
    "Candidate",
    "CategoryRule",
    "DirectoryWatcher",
    "FactClassifier",
    "ImportanceScorer",
    "IngestionPipeline",
    "IngestionResult",
    "MalformedLog",
    "PatternRegistry",
    "StalenessDetector",
    "WatchInitError",
    "estimate_tokens",
    "parse_conversation_log",
    "read_conversation_log",
    "summarize_log",
]
