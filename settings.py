API_URL = "https://api.siliconflow.cn/v1/chat/completions"
MODEL = "Pro/deepseek-ai/DeepSeek-R1"
TEMPERATURE = 0.2
API_KEY_ENV = "SF_API_KEY"   # environment variable holding the bearer token

MAX_RETRIES = 3              # total API attempts, not retries after the first
RETRY_DELAY = 2.0            # seconds, constant between API attempts
REQUEST_TIMEOUT = 600.0      # seconds per HTTP request

MAX_RESTART_ATTEMPTS = 5
RESTART_DELAY = 3.0          # seconds, constant between restart attempts
EARLY_EXIT_WINDOW = 2.0      # seconds to watch a fresh child for a non-zero exit

CONFIG_PATH = "embryo_config.json"
LOG_FILE = "embryo.log"
JOURNAL_PATH = "embryo_update_journal.json"
CHILD_LOG = "embryo.child.log"   # stdout/stderr of the next generation
