"""
Rule-based intent classifier for offline runs.

Production deployments plug an LLM-backed classifier into the same
``classify`` interface. This one uses keyword lists and regexes so the
console demo and the test suite behave deterministically.
"""

import logging
import re
from typing import Optional

from receptionist.conversation.state_machine import NEGATIVE_PATTERN, is_affirmative
from receptionist.schemas.turn import Entities, Intent, IntentResult, SessionContextSnapshot
from receptionist.utils import extract_email, extract_phone, find_time_reference

logger = logging.getLogger(__name__)


class KeywordIntentClassifier:
    """Deterministic keyword classifier with simple entity extraction."""

    ESCALATION_KEYWORDS = [
        "speak to a person", "speak to someone", "real person", "human",
        "manager", "supervisor", "representative", "operator", "transfer me",
    ]

    YES_WORDS = re.compile(r"\b(yes|yeah|yep|yup|sure|correct|right|absolutely|definitely|confirm)\b")

    GREETINGS = ["hello", "hi", "hey", "good morning", "good afternoon", "thanks", "thank you"]

    HOURS_QUESTION = re.compile(r"\b(hours|open|opening|close|closing|closed)\b")
    LOCATION_QUESTION = re.compile(
        r"\b(where are you|where is|your address|located|directions|how do i get)\b"
    )
    SERVICES_QUESTION = re.compile(
        r"\b(what services|which services|services do you|do you (offer|do|provide)"
        r"|what do you (offer|do))\b"
    )
    PRICING_QUESTION = re.compile(
        r"\b(how much|price|prices|pricing|cost|costs|charge|rates)\b"
    )
    GENERAL_QUESTION = re.compile(
        r"\b(parking|can i park|credit cards?|cash|pay by|payment|cancellation|refunds?|gift cards?"
        r"|wheelchair|accessible)\b"
    )
    BOOKING_CUES = re.compile(r"\b(book|booking|appointment|schedule|reserve|need|want)\b")
    SERVICE_CUE = re.compile(
        r"\b(?:book|schedule|need|want|get|like)\s+"
        r"(?:to\s+(?:book|schedule|get)\s+)?"
        r"(?:an?\s+|some\s+|the\s+|my\s+)?"
        r"(?P<service>[a-z][a-z' -]*?)"
        r"(?=\s+(?:for|on|at|tomorrow|today|next|this|please|around|with)\b|[.,!?]|$)"
    )
    NOT_A_SERVICE = {"it", "that", "this", "one", "appointment", "something", "help", "you", "in"}
    NOT_A_SERVICE_PREFIXES = ("to ", "come", "make", "speak", "talk", "know", "an appointment")
    MAX_SERVICE_WORDS = 4

    ADDRESS = re.compile(
        r"\b\d+\s+[a-z]+(?:\s+[a-z]+)*\s+"
        r"(?:street|st|avenue|ave|road|rd|boulevard|blvd|lane|ln|drive|dr|way|court|ct)\b"
    )
    PREFERENCES = {
        "remote": re.compile(r"\b(online|remote(ly)?|video( call)?|virtual(ly)?|over the phone)\b"),
        "on_site": re.compile(r"\b(come to (me|my \w+)|at my (house|home|place|office))\b"),
        "at_business": re.compile(r"\b(come (in|to you)|at your (office|shop|studio|location)|visit you)\b"),
    }
    CONTACT_LEAD_IN = re.compile(
        r"^(?:my name is|this is|it's|it is|i'm|you can reach me at|my number is|my email is)\s+"
    )

    def __init__(self, entity_confidence: float = 0.9) -> None:
        self._entity_confidence = entity_confidence

    async def classify(self, transcript: str, context: SessionContextSnapshot) -> IntentResult:
        result = self.classify_text(transcript)
        logger.debug("Classified %r as %s (%.2f)", transcript, result.intent, result.confidence)
        return result

    def classify_text(self, transcript: str) -> IntentResult:
        text = (transcript or "").strip()
        lower = text.lower()
        if not lower:
            return IntentResult(intent=Intent.UNCLEAR, confidence=0.0)

        if any(keyword in lower for keyword in self.ESCALATION_KEYWORDS):
            return IntentResult(intent=Intent.ESCALATION_REQUEST, confidence=0.9)

        question = self._question_intent(lower)
        if question is not None:
            return IntentResult(intent=question, confidence=0.85)

        entities = self.extract_entities(text)
        values = entities.slot_values()
        if values:
            return IntentResult(
                intent=self._slot_intent(lower, entities),
                confidence=self._entity_confidence,
                entities=entities,
            )

        if NEGATIVE_PATTERN.search(lower):
            return IntentResult(intent=Intent.NEGATIVE, confidence=0.9)
        if self.YES_WORDS.search(lower) and is_affirmative(lower):
            return IntentResult(intent=Intent.AFFIRMATIVE, confidence=0.95)
        if self.BOOKING_CUES.search(lower):
            return IntentResult(intent=Intent.BOOKING, confidence=0.8)
        if any(re.search(rf"\b{re.escape(g)}\b", lower) for g in self.GREETINGS):
            return IntentResult(intent=Intent.OTHER, confidence=0.6)
        return IntentResult(intent=Intent.UNCLEAR, confidence=0.2)

    def _question_intent(self, lower: str) -> Optional[Intent]:
        if self.SERVICES_QUESTION.search(lower):
            return Intent.SERVICES
        if self.PRICING_QUESTION.search(lower):
            return Intent.PRICING
        if self.LOCATION_QUESTION.search(lower):
            return Intent.LOCATION
        if self.HOURS_QUESTION.search(lower):
            return Intent.HOURS
        if self.GENERAL_QUESTION.search(lower):
            return Intent.GENERAL_QUESTION
        return None

    def _slot_intent(self, lower: str, entities: Entities) -> Intent:
        if entities.service or self.BOOKING_CUES.search(lower):
            return Intent.BOOKING
        if entities.time_window:
            return Intent.TIME_PROVIDED
        if entities.contact:
            return Intent.CONTACT_PROVIDED
        return Intent.LOCATION_PROVIDED

    def extract_entities(self, text: str) -> Entities:
        lower = text.lower()
        return Entities(
            service=self._extract_service(lower),
            time_window=self._extract_time_window(text),
            contact=self._extract_contact(text),
            location=self._extract_address(text),
            location_preference=self._extract_preference(lower),
        )

    def _extract_service(self, lower: str) -> Optional[str]:
        for match in self.SERVICE_CUE.finditer(lower):
            candidate = match.group("service").strip(" -'")
            if not candidate or candidate in self.NOT_A_SERVICE:
                continue
            if candidate.startswith(self.NOT_A_SERVICE_PREFIXES):
                continue
            if len(candidate.split()) > self.MAX_SERVICE_WORDS:
                continue
            return candidate
        return None

    @staticmethod
    def _extract_time_window(text: str) -> Optional[str]:
        match = find_time_reference(text)
        if match is None:
            return None
        window = re.split(r"[,.;!?]", text[match.start():], maxsplit=1)[0]
        return window.strip() or None

    def _extract_contact(self, text: str) -> Optional[str]:
        for clause in re.split(r"[,;]", text):
            if extract_phone(clause) or extract_email(clause):
                clause = clause.strip().rstrip(".")
                lead_in = self.CONTACT_LEAD_IN.match(clause.lower())
                return clause[lead_in.end():] if lead_in else clause
        return None

    def _extract_address(self, text: str) -> Optional[str]:
        match = self.ADDRESS.search(text.lower())
        return text[match.start():match.end()] if match else None

    def _extract_preference(self, lower: str) -> Optional[str]:
        for preference, pattern in self.PREFERENCES.items():
            if pattern.search(lower):
                return preference
        return None
