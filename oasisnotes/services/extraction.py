"""Section G score extraction from a transcript with a local LLM.

The model is asked for one JSON object holding the eight item scores plus
``confidence`` and ``reasoning``. Only a response with no locatable JSON
object is an error; individual bad values become None.
"""

import json
import math
from dataclasses import dataclass, field
from typing import Dict, Optional

from flask import current_app

from ..errors import ExtractionUnavailable, MalformedResponse
from .section_g import SECTION_G_FIELDS, TOTAL_FIELDS, completion_percentage

DEFAULT_CONFIDENCE = 75
DEFAULT_REASONING = "Automated analysis performed with Ollama"

SCORING_GUIDE = """SCORING GUIDE - Look for these EXACT phrases:

M1800 GROOMING (0-3):
• 0 = "independent", "without help", "unaided"
• 1 = "lay out supplies", "prepare materials", "setup help"
• 2 = "someone must help", "needs assistance", "help with grooming"
• 3 = "totally dependent", "complete help", "unable to groom"

M1810 DRESS UPPER (0-3):
• 0 = "dresses independently", "no help needed"
• 1 = "clothes laid out", "organize clothes", "setup help"
• 2 = "help putting on", "assistance with", "someone helps"
• 3 = "totally dependent", "cannot dress upper"

M1820 DRESS LOWER (0-3):
• 0 = "independent lower body", "no help with pants/shoes"
• 1 = "clothes laid out", "shoes organized"
• 2 = "help with socks/shoes", "assistance with pants"
• 3 = "totally dependent", "cannot dress lower"

M1830 BATHING (0-4):
• 0 = "bathes independently", "no help bathing"
• 1 = "uses grab bars", "with devices", "adaptive equipment"
• 2 = "intermittent help", "assistance getting in/out", "help with back"
• 3 = "presence throughout", "continuous assistance"
• 4 = "unable to use shower", "bed bath only"

M1840 TOILET TRANSFER (0-3):
• 0 = "transfers to toilet independently", "gets to bathroom alone"
• 1 = "supervision", "reminded", "assisted to bathroom"
• 2 = "uses bedside commode"
• 3 = "bedpan", "totally dependent"

M1845 TOILETING HYGIENE (0-3):
• 0 = "manages hygiene independently", "cleans self"
• 1 = "supplies laid out", "setup help with hygiene"
• 2 = "help with clothing", "assistance with cleanliness"
• 3 = "totally dependent", "cannot manage hygiene"

M1850 TRANSFERRING (0-5):
• 0 = "transfers independently", "no help moving"
• 1 = "minimal help", "supervision for safety"
• 2 = "bears weight", "pivot but needs help"
• 3 = "extensive help", "cannot bear weight"
• 4 = "bedfast but turns", "positions self in bed"
• 5 = "bedfast, cannot turn"

M1860 AMBULATION (0-6):
• 0 = "walks independently", "no device", "no help"
• 1 = "uses cane", "single crutch", "one-handed device"
• 2 = "uses walker", "crutches", "two-handed device"
• 3 = "walks with person", "human assistance"
• 4 = "wheelchair independent", "wheels self"
• 5 = "wheelchair dependent", "cannot wheel"
• 6 = "bedfast", "cannot get up\""""

OUTPUT_EXAMPLE = {
    "m1800Grooming": 1,
    "m1810DressUpper": 1,
    "m1820DressLower": 2,
    "m1830Bathing": 2,
    "m1840ToiletTransfer": 0,
    "m1845ToiletingHygiene": 2,
    "m1850Transferring": 1,
    "m1860Ambulation": 2,
    "confidence": 90,
    "reasoning": "Patient requires setup help for grooming and upper dressing, assistance with lower "
                 "dressing and toileting hygiene, intermittent bathing help, minimal transfer assistance, "
                 "and uses walker with supervision",
}


@dataclass
class ExtractionResult:
    scores: Dict[str, Optional[int]] = field(default_factory=dict)
    confidence: int = DEFAULT_CONFIDENCE
    reasoning: str = DEFAULT_REASONING

    @property
    def filled_fields(self):
        return sum(1 for v in self.scores.values() if v is not None)

    @property
    def completion_percentage(self):
        return completion_percentage(self.scores)

    def to_dict(self):
        out = {f.json_key: self.scores.get(f.attr) for f in SECTION_G_FIELDS}
        out["confidence"] = self.confidence
        out["reasoning"] = self.reasoning
        return out


def build_prompt(transcript, patient_context=None):
    lines = [
        "You are a certified OASIS home health nurse. Analyze this transcription and determine the "
        "EXACT OASIS Section G scores. Focus on specific keywords and evidence.",
        "",
    ]
    if patient_context:
        lines += [f"Patient Context: {patient_context}", ""]
    lines += [
        f'Medical Transcription: "{transcript}"',
        "",
        SCORING_GUIDE,
        "",
        f"Respond with ONLY a single JSON object with exactly these {TOTAL_FIELDS + 2} keys "
        "(use null for an item the transcription gives no evidence for):",
        json.dumps(OUTPUT_EXAMPLE, indent=2),
    ]
    return "\n".join(lines)


def first_json_object(text):
    """Return the first balanced ``{...}`` substring of ``text`` or None.

    Braces inside JSON string literals are ignored.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # unbalanced from here on; try a later opening brace
        start = text.find("{", start + 1)
    return None


def parse_response(raw):
    """Decode the model output into a dict, tolerating surrounding prose."""
    text = (raw or "").strip()
    if not text.startswith("{"):
        found = first_json_object(text)
        if found is None:
            raise MalformedResponse("No JSON found in response")
        text = found
    try:
        data = json.loads(text)
    except ValueError as e:
        found = first_json_object(text)
        if found is None or found == text:
            raise MalformedResponse("Failed to parse OASIS response", cause=e) from e
        # trailing prose after a leading object
        try:
            data = json.loads(found)
        except ValueError as e2:
            raise MalformedResponse("Failed to parse OASIS response", cause=e2) from e2
    if not isinstance(data, dict):
        raise MalformedResponse("OASIS response is not a JSON object")
    return data


def _confidence(value):
    if value is None or isinstance(value, bool):
        return DEFAULT_CONFIDENCE
    try:
        num = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if not math.isfinite(num):
        return DEFAULT_CONFIDENCE
    return int(round(min(100.0, max(0.0, num))))


def validate(data):
    """Build an ``ExtractionResult`` from decoded model output.

    Each item is kept only if it is an integer inside that item's range.
    """
    scores = {f.attr: f.scale.coerce(data.get(f.json_key)) for f in SECTION_G_FIELDS}
    reasoning = data.get("reasoning")
    if not isinstance(reasoning, str) or not reasoning.strip():
        reasoning = DEFAULT_REASONING
    return ExtractionResult(scores=scores, confidence=_confidence(data.get("confidence")),
                            reasoning=reasoning.strip())


class SectionGExtractor:
    def __init__(self, client):
        self.client = client

    @classmethod
    def from_config(cls, config):
        from .ollama import OllamaClient
        return cls(OllamaClient.from_config(config))

    def extract(self, transcript, patient_context=None):
        if not self.client.is_available():
            raise ExtractionUnavailable(
                "Ollama service not available. Please ensure Ollama is running and the model is installed.")

        current_app.logger.info("Processing OASIS data with Ollama (%d transcript chars)", len(transcript or ""))
        raw = self.client.generate(build_prompt(transcript, patient_context))
        try:
            result = validate(parse_response(raw))
        except MalformedResponse:
            current_app.logger.error("Unparseable Ollama response: %r", (raw or "")[:1000])
            raise
        current_app.logger.info("Extracted %d/%d Section G items (confidence %s%%)",
                    result.filled_fields, TOTAL_FIELDS, result.confidence)
        return result
