"""
correlator/classify/ollama_adapter.py
Local Ollama backend for the optional message classifier.
Any model pulled via `ollama pull <model>` works; small instruct models
are enough for a yes/no with categories.
"""

import json
import logging
import urllib.error
import urllib.request
from typing import List, Optional

from correlator.classify.base import ClassificationResult, Classifier

logger = logging.getLogger(__name__)


class OllamaClassifier(Classifier):

    def __init__(
        self,
        model:       str   = 'llama3:8b-instruct',
        host:        str   = 'http://localhost:11434',
        timeout_sec: int   = 60,
        temperature: float = 0.1,
    ):
        self.model       = model
        self.host        = host.rstrip('/')
        self.timeout_sec = timeout_sec
        self.temperature = temperature

    # ── AVAILABILITY CHECK ───────────────────────────────────
    def is_available(self) -> bool:
        try:
            req = urllib.request.Request(f"{self.host}/api/tags", method='GET')
            with urllib.request.urlopen(req, timeout=5) as resp:
                data   = json.loads(resp.read().decode())
                models = [m['name'] for m in data.get('models', [])]
        except urllib.error.URLError:
            logger.warning(f"Ollama not reachable at {self.host}; using keyword-only mode.")
            return False
        except (ValueError, KeyError, OSError) as e:
            logger.warning(f"Ollama availability check failed: {e}")
            return False

        available = any(
            m == self.model or m.startswith(self.model.split(':')[0])
            for m in models
        )
        if not available:
            logger.warning(f"Model '{self.model}' not pulled in Ollama. Available: {models}")
        return available

    # ── CLASSIFY ─────────────────────────────────────────────
    def classify(self, text: str, hint_categories: List[str]) -> Optional[ClassificationResult]:
        payload = json.dumps({
            'model':   self.model,
            'prompt':  self.build_prompt(text, hint_categories),
            'stream':  False,
            'options': {'temperature': self.temperature, 'num_predict': 200},
            'format':  'json',
        }).encode('utf-8')

        try:
            req = urllib.request.Request(
                f"{self.host}/api/generate",
                data    = payload,
                headers = {'Content-Type': 'application/json'},
                method  = 'POST',
            )
            with urllib.request.urlopen(req, timeout=self.timeout_sec) as resp:
                data = json.loads(resp.read().decode('utf-8'))
        except urllib.error.URLError as e:
            logger.error(f"Ollama request failed: {e}")
            return None
        except (ValueError, OSError) as e:
            logger.error(f"Ollama classify error: {e}")
            return None

        return self._parse_response(data.get('response', ''))

    # ── RESPONSE PARSER ──────────────────────────────────────
    def _parse_response(self, text: str) -> Optional[ClassificationResult]:
        """Tolerates markdown fences some models add despite format=json."""
        clean = (text or '').strip()
        if clean.startswith('```'):
            clean = clean.split('```')[1]
            if clean.startswith('json'):
                clean = clean[4:]
        try:
            data = json.loads(clean.strip())
        except json.JSONDecodeError as e:
            logger.error(f"Unparseable Ollama response: {e}")
            return None
        if not isinstance(data, dict):
            return None

        return ClassificationResult(
            suspicious = bool(data.get('suspicious', False)),
            categories = [c.upper() for c in data.get('categories', []) if isinstance(c, str)],
            severity   = str(data.get('severity', 'LOW')).upper(),
            reason     = str(data.get('reason', ''))[:500],
            model_used = self.model,
        )
