"""Configuration for the triage engine (environment-driven, with defaults)."""

import os

REDIS_URL: str = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
# memory | redis. Redis shares the technician pool across API processes.
REGISTRY_BACKEND: str = os.environ.get("REGISTRY_BACKEND", "memory")
# Optional: if set, tenant/technician SMS are POSTed here instead of only being logged.
NOTIFY_WEBHOOK_URL: str = os.environ.get("NOTIFY_WEBHOOK_URL", "")

# --- Phone numbers for human handoff ---
ESCALATION_NUMBER: str = os.environ.get("ESCALATION_NUMBER", "+1800MANAGER")
BACKUP_LINE: str = os.environ.get("BACKUP_LINE", "+1800BACKUP")

# --- Conversation ---
UTTERANCE_TIMEOUT_SECONDS: float = float(os.environ.get("UTTERANCE_TIMEOUT_SECONDS", "10"))
MAX_REPROMPTS: int = int(os.environ.get("MAX_REPROMPTS", "2"))
CLASSIFIER_LATENCY_MS: int = int(os.environ.get("CLASSIFIER_LATENCY_MS", "0"))
LOW_CONFIDENCE_THRESHOLD: float = float(os.environ.get("LOW_CONFIDENCE_THRESHOLD", "0.75"))
DEFAULT_PROPERTY_ID: str = os.environ.get("DEFAULT_PROPERTY_ID", "prop-1")
DEFAULT_UNIT: str = os.environ.get("DEFAULT_UNIT", "101")

# --- Escalation ---
EMERGENCY_UNASSIGNED_MINUTES: int = int(os.environ.get("EMERGENCY_UNASSIGNED_MINUTES", "15"))
SAFETY_RISK_UNASSIGNED_MINUTES: int = int(os.environ.get("SAFETY_RISK_UNASSIGNED_MINUTES", "10"))
MAX_FAILED_NOTIFICATIONS: int = int(os.environ.get("MAX_FAILED_NOTIFICATIONS", "2"))
# Seconds between background escalation sweeps; 0 disables the sweep.
ESCALATION_SWEEP_SECONDS: int = int(os.environ.get("ESCALATION_SWEEP_SECONDS", "60"))
