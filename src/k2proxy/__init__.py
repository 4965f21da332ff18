"""An OpenAI-compatible proxy for the K2 Think streaming chat API."""

__version__ = "0.1.0"

from .config import load_config, ProxyConfig
from .api import create_app
from .utils import extract_reasoning_and_answer, calculate_delta_content

from .sse import SSELineSplitter, decode_payload
from .streaming import DeltaEngine, TranslationState, translate_stream
from .aggregation import aggregate_stream
