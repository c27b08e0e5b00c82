"""
Google Gemini Vision provider for SiteSight.

The only component that talks to the network. It is reached through the
inference orchestrator, which owns retries and model fallback.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Tuple

from ...exceptions import ConfigurationError, PermissionDeniedError, TransientServiceError
from ...inference.orchestrator import ErrorClass, InferenceRequest
from ...models import PhotoRecord

logger = logging.getLogger(__name__)

try:
    import google.generativeai as genai
    from google.api_core import exceptions as google_exceptions
    GEMINI_AVAILABLE = True
except ImportError:
    GEMINI_AVAILABLE = False
    logger.warning("Google Generative AI package not installed")


TRANSIENT_MARKERS = ('429', '503', 'RESOURCE_EXHAUSTED', 'UNAVAILABLE', 'overloaded')
PERMISSION_MARKERS = ('403', 'PERMISSION_DENIED')


def classify_gemini_error(error: BaseException) -> ErrorClass:
    """
    Classify an error raised while calling Gemini

    Args:
        error: Raised exception

    Returns:
        ABORT for permission errors, TRANSIENT for rate limits and
        unavailability, PERMANENT for everything else
    """
    if isinstance(error, PermissionDeniedError):
        return ErrorClass.ABORT
    if isinstance(error, TransientServiceError):
        return ErrorClass.TRANSIENT

    if GEMINI_AVAILABLE:
        if isinstance(error, google_exceptions.PermissionDenied):
            return ErrorClass.ABORT
        if isinstance(error, (google_exceptions.ResourceExhausted,
                              google_exceptions.TooManyRequests,
                              google_exceptions.ServiceUnavailable,
                              google_exceptions.DeadlineExceeded)):
            return ErrorClass.TRANSIENT

    message = str(error)
    if any(marker in message for marker in PERMISSION_MARKERS):
        return ErrorClass.ABORT
    if any(marker in message for marker in TRANSIENT_MARKERS):
        return ErrorClass.TRANSIENT
    return ErrorClass.PERMANENT


class GeminiVisionProvider:
    """Google Gemini Vision implementation."""

    def __init__(self, config: Dict):
        """
        Initialize Gemini Vision provider.

        Args:
            config: The ``inference`` configuration section
        """
        if not GEMINI_AVAILABLE:
            raise ImportError("Please install google-generativeai: pip install google-generativeai")

        self.config = config
        self.name = "gemini"

        # Configure API
        api_key = config.get('api_key')
        if not api_key or str(api_key).startswith('${'):
            api_key = os.environ.get('GEMINI_API_KEY')
        if not api_key:
            raise ConfigurationError("Gemini API key not provided (set GEMINI_API_KEY)")

        genai.configure(api_key=api_key)

        self.max_output_tokens = config.get('max_output_tokens', 8192)
        self.default_temperature = config.get('temperature', 0.1)
        self.request_timeout = config.get('request_timeout', 300)
        self._models: Dict[Tuple[str, str], Any] = {}

    def _get_model(self, model_name: str, system_instruction: str = None):
        key = (model_name, system_instruction or "")
        if key not in self._models:
            self._models[key] = genai.GenerativeModel(
                model_name,
                system_instruction=system_instruction or None,
            )
        return self._models[key]

    @staticmethod
    def prepare_image(photo: PhotoRecord) -> Dict[str, Any]:
        """
        Inline image part for a photo

        Args:
            photo: Photo whose payload is raw bytes or a file path

        Returns:
            Blob dict accepted by generate_content
        """
        payload = photo.payload
        if isinstance(payload, (bytes, bytearray)):
            data = bytes(payload)
        else:
            data = Path(payload).read_bytes()
        return {'mime_type': photo.mime_type, 'data': data}

    def generate(self, request: InferenceRequest) -> str:
        """
        Run one request against Gemini and return the raw response text

        Args:
            request: Model, photos, prompt, schema and temperature

        Returns:
            Response text (JSON when a schema is given)
        """
        model = self._get_model(request.model, request.system_instruction)

        contents: List[Any] = [self.prepare_image(photo) for photo in request.batch]
        contents.append(request.prompt)

        generation_config = {
            'temperature': (request.temperature if request.temperature is not None
                            else self.default_temperature),
            'max_output_tokens': self.max_output_tokens,
            'response_mime_type': 'application/json',
        }
        if request.schema is not None:
            generation_config['response_schema'] = request.schema

        logger.debug(f"Gemini request: model={request.model}, photos={len(request.batch)}, "
                     f"temperature={generation_config['temperature']}")

        response = model.generate_content(
            contents,
            generation_config=generation_config,
            request_options={'timeout': self.request_timeout},
        )

        # Add usage data if available
        usage = getattr(response, 'usage_metadata', None)
        if usage is not None:
            logger.debug(f"Gemini usage: prompt={usage.prompt_token_count}, "
                         f"completion={usage.candidates_token_count}, "
                         f"total={usage.total_token_count}")

        return response.text
