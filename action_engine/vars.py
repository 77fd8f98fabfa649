import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "conversational-action-engine")
LOGGER_NAME = os.getenv("LOGGER_NAME", "action_engine")

LLM_URL = os.getenv("LLM_URL", "")
LLM_TOKEN = os.getenv("LLM_TOKEN", "")
LLM_MODEL_NAME = os.getenv("LLM_MODEL_NAME", "gpt-4o")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))

DEFAULT_TEMPERATURE = float(os.getenv("DEFAULT_TEMPERATURE", "0.7"))
DEFAULT_MAX_TOKENS = int(os.getenv("DEFAULT_MAX_TOKENS", "4000"))

# Tool-calling rounds allowed per conversation turn
MAX_TOOL_RECURSION_DEPTH = int(os.getenv("MAX_TOOL_RECURSION_DEPTH", "5"))
MAX_RECENT_MESSAGES = int(os.getenv("MAX_RECENT_MESSAGES", "6"))

KNOWLEDGE_TOP_K = int(os.getenv("KNOWLEDGE_TOP_K", "5"))
KNOWLEDGE_MIN_SIMILARITY = float(os.getenv("KNOWLEDGE_MIN_SIMILARITY", "0.7"))
KNOWLEDGE_CHUNK_CHAR_LIMIT = int(os.getenv("KNOWLEDGE_CHUNK_CHAR_LIMIT", "1500"))
TOOL_RESULT_CHAR_LIMIT = int(os.getenv("TOOL_RESULT_CHAR_LIMIT", "4000"))

ACTION_TIMEOUT_SECONDS = float(os.getenv("ACTION_TIMEOUT_SECONDS", "30"))
CALLBACK_TIMEOUT_SECONDS = float(os.getenv("CALLBACK_TIMEOUT_SECONDS", "10"))

WORKFLOWS_PATH = os.getenv("WORKFLOWS_PATH", "")
WORKFLOW_MATCH_THRESHOLD = float(os.getenv("WORKFLOW_MATCH_THRESHOLD", "10"))
STEP_RETRY_BACKOFF_SECONDS = float(os.getenv("STEP_RETRY_BACKOFF_SECONDS", "1.0"))

BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "America/Mexico_City")
BUSINESS_HOURS_START = int(os.getenv("BUSINESS_HOURS_START", "9"))
BUSINESS_HOURS_END = int(os.getenv("BUSINESS_HOURS_END", "18"))
