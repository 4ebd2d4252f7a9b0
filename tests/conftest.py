import os

# Use litellm's bundled model cost map instead of fetching it over the network
# at import time; the offline fetch-retry thread can deadlock litellm's import.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")
