"""
Centralized constants for the indexing job orchestrator.
All magic numbers extracted from codebase.
"""

# ===========================================
# JOB TYPES
# ===========================================
JOB_TYPE_FORUM = "forum_topics"
JOB_TYPE_WORDPRESS = "wordpress_content"
DEFAULT_JOB_TYPE = JOB_TYPE_FORUM

# ===========================================
# BATCH LOOP (client-stepped mode)
# ===========================================
BATCH_SIZE_DEFAULT = 10
BATCH_SIZE_MIN = 1
BATCH_SIZE_MAX = 50
BATCH_DELAY_SECONDS = 0.5             # between successful batches
BATCH_RETRY_DELAY_SECONDS = 1.0       # after a rejected batch or a "wait" answer
NETWORK_RETRY_DELAY_SECONDS = 2.0     # first backoff after a transport failure, doubled per repeat
NETWORK_RETRY_MAX_DELAY_SECONDS = 60.0
MAX_CONSECUTIVE_REJECTIONS = 10       # refused batches in a row before giving up

# ===========================================
# STATUS POLLING (queue mode)
# ===========================================
POLL_INTERVAL_SECONDS = 10.0
POLL_INTERVAL_WORDPRESS_SECONDS = 5.0
POLL_SAFETY_TIMEOUT_SECONDS = 7200    # 2 hours
REFRESH_DELAY_SECONDS = 1.0

# ===========================================
# CHUNKING (passed through to the executor)
# ===========================================
CHUNK_SIZE_DEFAULT = 512
OVERLAP_PERCENT_DEFAULT = 20

# ===========================================
# API / TRANSPORT
# ===========================================
AJAX_ACTION = "wpforo_ai_action"
AJAX_STATUS_ACTION = "wpforo_ai_get_rag_status"
REQUEST_TIMEOUT_SECONDS = 120.0

# ===========================================
# MESSAGES
# ===========================================
INSUFFICIENT_CREDITS_MESSAGE = (
    "Indexing stopped: Insufficient credits. Please wait for your monthly "
    "reset or purchase additional credits."
)

# ===========================================
# PERSISTED STATE
# ===========================================
STATE_DIR = 'data/state'
STOP_INTENT_FILE = 'stop_intent.json'

# ===========================================
# LOGGING
# ===========================================
LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE = 'logs/indexer.log'
LOG_MAX_SIZE_MB = 10
LOG_BACKUP_COUNT = 5
