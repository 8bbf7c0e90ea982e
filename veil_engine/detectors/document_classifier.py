"""
Document type classification and per-type position rules.

Classifies text as INVOICE, LETTER, FORM, CONTRACT or REPORT from keyword
hits, structural patterns and header/footer position boosts. Below
MIN_DOCUMENT_TYPE_CONFIDENCE the type is UNKNOWN and no type rules apply.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

from veil_engine.detection_config import MIN_DOCUMENT_TYPE_CONFIDENCE, SUPPORTED_LANGUAGES
from veil_engine.types import Entity

logger = logging.getLogger(__name__)


class DocumentType:
    INVOICE = "INVOICE"
    LETTER = "LETTER"
    FORM = "FORM"
    CONTRACT = "CONTRACT"
    REPORT = "REPORT"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def values(cls) -> Tuple[str, ...]:
        return (cls.INVOICE, cls.LETTER, cls.FORM, cls.CONTRACT, cls.REPORT, cls.UNKNOWN)


# Score that maps to confidence 1.0 (keywords plus patterns of a clear document)
MAX_CLASSIFICATION_SCORE = 3.0
STRUCTURAL_PATTERN_WEIGHT = 0.15

HEADER_ZONE = 0.2
FOOTER_ZONE = 0.8

LANGUAGE_SAMPLE_SIZE = 2000
DEFAULT_LANGUAGE = "de"


# ============================================================================
# Keyword and pattern tables
# ============================================================================

DOCUMENT_KEYWORDS: Dict[str, Dict[str, List[str]]] = {
    DocumentType.INVOICE: {
        "en": ["invoice", "bill", "payment due", "amount due", "subtotal", "total", "tax", "vat",
               "qty", "quantity", "unit price", "invoice number", "invoice date", "due date",
               "payment terms", "remittance"],
        "fr": ["facture", "montant", "total", "tva", "quantité", "prix unitaire", "numéro de facture",
               "date de facture", "échéance", "règlement", "net à payer", "ht", "ttc"],
        "de": ["rechnung", "rechnungsnummer", "betrag", "mwst", "mehrwertsteuer", "gesamtbetrag",
               "menge", "einzelpreis", "rechnungsdatum", "zahlbar", "fällig", "netto", "brutto"],
    },
    DocumentType.LETTER: {
        "en": ["dear", "sincerely", "regards", "yours truly", "yours faithfully", "best regards",
               "kind regards", "to whom it may concern", "enclosed", "please find", "i am writing",
               "thank you for"],
        "fr": ["cher", "chère", "madame", "monsieur", "cordialement", "salutations", "veuillez agréer",
               "je vous prie", "meilleures salutations", "bien à vous", "ci-joint", "objet"],
        "de": ["sehr geehrte", "sehr geehrter", "liebe", "lieber", "mit freundlichen grüßen",
               "mit freundlichen grüssen", "hochachtungsvoll", "beste grüsse", "anbei", "betreff"],
    },
    DocumentType.FORM: {
        "en": ["please fill", "please complete", "check box", "checkbox", "select one", "enter your",
               "your name", "your address", "date of birth", "signature", "sign here",
               "required field", "mandatory", "not applicable"],
        "fr": ["veuillez remplir", "cochez", "case à cocher", "sélectionnez", "votre nom",
               "votre adresse", "date de naissance", "signature", "champ obligatoire", "facultatif"],
        "de": ["bitte ausfüllen", "ankreuzen", "kontrollkästchen", "wählen sie", "ihr name",
               "ihre adresse", "geburtsdatum", "unterschrift", "pflichtfeld", "nicht zutreffend"],
    },
    DocumentType.CONTRACT: {
        "en": ["agreement", "contract", "parties", "whereas", "hereby", "herein", "clause", "article",
               "terms and conditions", "effective date", "termination", "obligations", "warranties",
               "governing law", "jurisdiction", "binding"],
        "fr": ["contrat", "accord", "parties", "attendu que", "par les présentes", "ci-après", "clause",
               "article", "conditions générales", "résiliation", "obligations", "garanties",
               "loi applicable", "juridiction"],
        "de": ["vertrag", "vereinbarung", "parteien", "hiermit", "klausel", "artikel", "paragraph",
               "allgemeine geschäftsbedingungen", "agb", "inkrafttreten", "kündigung", "pflichten",
               "gewährleistung", "anwendbares recht", "gerichtsstand"],
    },
    DocumentType.REPORT: {
        "en": ["executive summary", "introduction", "conclusion", "findings", "recommendations",
               "analysis", "methodology", "results", "discussion", "appendix", "table of contents",
               "abstract", "overview", "background", "objectives"],
        "fr": ["résumé exécutif", "introduction", "conclusion", "résultats", "recommandations",
               "analyse", "méthodologie", "discussion", "annexe", "table des matières", "sommaire",
               "contexte", "objectifs"],
        "de": ["zusammenfassung", "einleitung", "fazit", "ergebnisse", "empfehlungen", "analyse",
               "methodik", "diskussion", "anhang", "inhaltsverzeichnis", "überblick", "hintergrund",
               "ziele"],
    },
}

STRUCTURAL_PATTERNS: Dict[str, List[Pattern]] = {
    DocumentType.INVOICE: [
        re.compile(r"(?:invoice|rechnung|facture)\s*(?:no\.?|nr\.?|#|:)\s*[\w-]+", re.IGNORECASE),
        re.compile(r"(?:total|montant|betrag)\s*[:=]?\s*(?:chf|eur|usd|€|£|\$)?\s*[\d',.]+", re.IGNORECASE),
        re.compile(r"(?:qty|menge|quantité)\s+(?:unit|preis|prix)", re.IGNORECASE),
        re.compile(r"(?:chf|eur|usd)\s*[\d',.]+\d", re.IGNORECASE),
        re.compile(r"\d+[.,]\d{2}\s*(?:chf|eur|usd|€)", re.IGNORECASE),
    ],
    DocumentType.LETTER: [
        re.compile(r"^(?:dear|sehr geehrte[r]?|cher|chère|madame|monsieur)", re.IGNORECASE | re.MULTILINE),
        re.compile(r"(?:sincerely|regards|cordialement|grüße|grüssen|salutations)\s*,?\s*$",
                   re.IGNORECASE | re.MULTILINE),
        re.compile(r"^(?:re:|betreff:|objet:|subject:)", re.IGNORECASE | re.MULTILINE),
        re.compile(r"(?:enclosed|anbei|ci-joint)", re.IGNORECASE),
    ],
    DocumentType.FORM: [
        re.compile(r"\[\s*\]|\(\s*\)|□|☐|☑|☒"),
        re.compile(r"(?:name|nom):\s*_{2,}|_{5,}", re.IGNORECASE),
        re.compile(r"(?:yes|no|oui|non|ja|nein)\s*(?:\[\s*\]|\(\s*\))", re.IGNORECASE),
        re.compile(r"please\s+(?:check|tick|fill|complete)", re.IGNORECASE),
        re.compile(r"\*\s*(?:required|obligatoire|pflichtfeld)", re.IGNORECASE),
    ],
    DocumentType.CONTRACT: [
        re.compile(r"(?:between|entre|zwischen)\s+(?:the\s+)?(?:parties|parteien|les parties)", re.IGNORECASE),
        re.compile(r"(?:article|clause|section)\s+\d+", re.IGNORECASE),
        re.compile(r"(?:whereas|attendu que|in anbetracht)", re.IGNORECASE),
        re.compile(r"(?:hereby|par les présentes|hiermit)\s+(?:agree|conviennent|vereinbaren)", re.IGNORECASE),
    ],
    DocumentType.REPORT: [
        re.compile(r"(?:table\s+of\s+contents|inhaltsverzeichnis|table\s+des\s+matières)", re.IGNORECASE),
        re.compile(r"(?:executive\s+summary|zusammenfassung|résumé)", re.IGNORECASE),
        re.compile(r"^(?:\d+\.|\d+\))\s+(?:introduction|methodology|results|conclusion)",
                   re.IGNORECASE | re.MULTILINE),
        re.compile(r"(?:appendix|anhang|annexe)\s+[a-z\d]", re.IGNORECASE),
        re.compile(r"(?:figure|table|abbildung|tabelle)\s+\d+", re.IGNORECASE),
    ],
}

# (pattern over the first/last five lines, document type, boost, feature name)
POSITION_BOOSTS = [
    ("first", re.compile(r"invoice|rechnung|facture", re.IGNORECASE), DocumentType.INVOICE, 0.2, "invoice_header"),
    ("first", re.compile(r"dear|sehr geehrte|cher|madame|monsieur", re.IGNORECASE), DocumentType.LETTER, 0.2,
     "salutation_start"),
    ("last", re.compile(r"sincerely|regards|grüß|grüss|cordialement|salutations", re.IGNORECASE),
     DocumentType.LETTER, 0.15, "signature_end"),
    ("first", re.compile(r"between|entre|zwischen.*(?:parties|parteien)", re.IGNORECASE), DocumentType.CONTRACT,
     0.2, "parties_clause"),
    ("first", re.compile(r"table of contents|inhaltsverzeichnis|table des matières", re.IGNORECASE),
     DocumentType.REPORT, 0.25, "toc_header"),
]

LANGUAGE_MARKERS: Dict[str, Tuple[str, ...]] = {
    "en": ("the", "and", "is", "are", "was", "were", "have", "has", "this", "that", "with", "for",
           "your", "please", "dear"),
    "fr": ("le", "la", "les", "du", "des", "et", "est", "sont", "vous", "nous", "dans", "pour",
           "avec", "cette", "votre", "rue"),
    "de": ("der", "die", "das", "und", "ist", "sind", "ihr", "ihre", "wir", "mit", "für", "von",
           "bei", "nach", "bitte", "strasse"),
}

_MARKER_PATTERNS = {
    language: re.compile(r"\b(?:" + "|".join(map(re.escape, words)) + r")\b", re.IGNORECASE)
    for language, words in LANGUAGE_MARKERS.items()
}


def detect_language(text: str) -> str:
    """
    Marker-word vote over the first 2000 characters.

    Returns:
        "en", "fr" or "de"; German when nothing matches or on a tie with it
    """
    sample = text[:LANGUAGE_SAMPLE_SIZE]
    best, best_count = DEFAULT_LANGUAGE, 0
    for language in (DEFAULT_LANGUAGE,) + tuple(lang for lang in SUPPORTED_LANGUAGES if lang != DEFAULT_LANGUAGE):
        count = len(_MARKER_PATTERNS[language].findall(sample))
        if count > best_count:
            best, best_count = language, count
    return best


@dataclass
class ClassificationFeature:
    name: str
    weight: float
    match: Optional[str] = None
    position: Optional[float] = None


@dataclass
class DocumentClassification:
    document_type: str
    confidence: float
    language: str
    secondary_type: Optional[str] = None
    features: List[ClassificationFeature] = field(default_factory=list)

    @property
    def rules_apply(self) -> bool:
        return self.document_type != DocumentType.UNKNOWN and self.confidence >= MIN_DOCUMENT_TYPE_CONFIDENCE

    def to_dict(self) -> Dict:
        return {
            "type": self.document_type,
            "confidence": round(self.confidence, 4),
            "language": self.language,
            "secondary_type": self.secondary_type,
            "features": [f.name for f in self.features],
        }


def keyword_weight(keyword: str, match_count: int) -> float:
    """Longer keywords are more specific; repeats add with diminishing returns."""
    length_factor = min(len(keyword) / 8, 1.5)
    count_factor = 1 + math.log2(match_count + 1) * 0.5
    return 0.08 * length_factor * count_factor


class DocumentClassifier:
    def __init__(self, min_confidence: float = MIN_DOCUMENT_TYPE_CONFIDENCE, analyze_structure: bool = True):
        self.min_confidence = min_confidence
        self.analyze_structure = analyze_structure
        self._keyword_patterns = {
            doc_type: {
                language: [(kw, re.compile(rf"(?<!\w){re.escape(kw)}(?!\w)", re.IGNORECASE)) for kw in keywords]
                for language, keywords in by_language.items()
            }
            for doc_type, by_language in DOCUMENT_KEYWORDS.items()
        }

    def classify(self, text: str, language: Optional[str] = None) -> DocumentClassification:
        """
        Classify a document.

        Args:
            text: Document text
            language: Known language; detected when omitted

        Returns:
            DocumentClassification (UNKNOWN below min_confidence)
        """
        language = language or detect_language(text)
        scores: Dict[str, float] = {t: 0.0 for t in DOCUMENT_KEYWORDS}
        features: List[ClassificationFeature] = []

        for doc_type, by_language in self._keyword_patterns.items():
            for keyword, pattern in by_language.get(language, by_language["en"]):
                matches = pattern.findall(text)
                if not matches:
                    continue
                weight = keyword_weight(keyword, len(matches))
                scores[doc_type] += weight
                features.append(ClassificationFeature(f"keyword:{keyword}", weight))

        if self.analyze_structure and text:
            for doc_type, patterns in STRUCTURAL_PATTERNS.items():
                for pattern in patterns:
                    match = pattern.search(text)
                    if match is None:
                        continue
                    scores[doc_type] += STRUCTURAL_PATTERN_WEIGHT
                    features.append(ClassificationFeature(
                        f"pattern:{doc_type.lower()}",
                        STRUCTURAL_PATTERN_WEIGHT,
                        position=match.start() / len(text),
                    ))

        self._apply_position_boosts(text, scores, features)

        ranked = sorted(scores.items(), key=lambda item: (-item[1], DocumentType.values().index(item[0])))
        primary_type, primary_score = ranked[0]
        secondary_type, secondary_score = ranked[1]
        confidence = min(primary_score / MAX_CLASSIFICATION_SCORE, 1.0)

        result = DocumentClassification(
            document_type=primary_type if confidence >= self.min_confidence else DocumentType.UNKNOWN,
            confidence=confidence,
            language=language,
            secondary_type=secondary_type if secondary_score > 0.2 else None,
            features=sorted(features, key=lambda f: -f.weight)[:10],
        )
        logger.debug(f"Classified document as {result.document_type} ({confidence:.2f}, {language})")
        return result

    @staticmethod
    def _apply_position_boosts(text: str, scores: Dict[str, float], features: List[ClassificationFeature]):
        lines = text.split("\n")
        zones = {"first": "\n".join(lines[:5]), "last": "\n".join(lines[-5:])}
        for zone, pattern, doc_type, boost, name in POSITION_BOOSTS:
            if pattern.search(zones[zone]):
                scores[doc_type] += boost
                features.append(ClassificationFeature(
                    f"position:{name}", boost, position=0.0 if zone == "first" else 1.0,
                ))


# ============================================================================
# Type rules: position-zone confidence adjustments
# ============================================================================

# document type -> [(entity types, zone, adjustment)]; zone None means anywhere but footer
TYPE_RULES: Dict[str, List[Tuple[Tuple[str, ...], str, float]]] = {
    DocumentType.INVOICE: [
        (("IBAN", "PAYMENT_REF"), "footer", 0.1),
        (("VAT_NUMBER",), "header", 0.05),
        (("ADDRESS", "SWISS_ADDRESS"), "header", 0.05),
    ],
    DocumentType.LETTER: [
        (("ADDRESS", "SWISS_ADDRESS"), "header", 0.15),
        (("PERSON_NAME",), "footer", 0.15),
        (("PERSON_NAME",), "not_footer", 0.1),
    ],
    DocumentType.CONTRACT: [
        (("PERSON_NAME", "ORGANIZATION"), "header", 0.1),
        (("PERSON_NAME",), "footer", 0.15),
    ],
    DocumentType.REPORT: [
        (("PERSON_NAME",), "header", 0.15),
    ],
}

LABELED_FIELD_BOOST = 0.1


def position_zone(start: int, text_length: int) -> str:
    if text_length <= 0:
        return "body"
    ratio = start / text_length
    if ratio < HEADER_ZONE:
        return "header"
    if ratio > FOOTER_ZONE:
        return "footer"
    return "body"


def _rule_matches(zone: str, rule_zone: str) -> bool:
    if rule_zone == "not_footer":
        return zone != "footer"
    return zone == rule_zone


def type_adjustment(entity: Entity, document_type: str, zone: str) -> float:
    adjustment = 0.0
    for entity_types, rule_zone, value in TYPE_RULES.get(document_type, ()):
        if entity.entity_type in entity_types and _rule_matches(zone, rule_zone):
            adjustment += value
    if document_type == DocumentType.FORM and entity.metadata.get("is_labeled_field"):
        adjustment += LABELED_FIELD_BOOST
    return adjustment


def apply_type_rules(
    entities: Sequence[Entity],
    text: str,
    classification: DocumentClassification,
) -> List[Entity]:
    """
    Tag every entity with its position zone; adjust confidence when the
    classification is confident enough for type rules.
    """
    text_length = len(text)
    apply = classification.rules_apply
    result = []
    for entity in entities:
        zone = position_zone(entity.start, text_length)
        adjustment = type_adjustment(entity, classification.document_type, zone) if apply else 0.0
        result.append(entity.with_confidence(
            entity.confidence + adjustment,
            position_zone=zone,
            document_type=classification.document_type,
        ))
    return result
