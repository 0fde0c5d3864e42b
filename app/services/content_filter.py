"""Pass 1: programmatic removal of sentences written in unwanted languages"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple
import re

from app.services.language_detector import DEFAULT_PROFILES, LanguageProfiles, attribute_languages

MIN_SENTENCE_CHARS = 3

# Runs of terminal punctuation close a sentence; a trailing fragment is its own sentence
SENTENCE_PATTERN = re.compile(r"[^.!?]*[.!?]+|[^.!?]+$")


@dataclass
class FilterStats:
    original_len: int
    cleaned_len: int
    sentences_total: int
    sentences_removed: int
    per_language_sentence_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def retained_ratio(self) -> float:
        """Fraction of the original characters still present after filtering"""
        if self.original_len == 0:
            return 0.0
        return self.cleaned_len / self.original_len

    def as_dict(self) -> Dict:
        return {
            "original_len": self.original_len,
            "cleaned_len": self.cleaned_len,
            "sentences_total": self.sentences_total,
            "sentences_removed": self.sentences_removed,
            "per_language_sentence_counts": dict(self.per_language_sentence_counts),
        }


def split_sentences(text: str) -> List[str]:
    sentences = []
    for match in SENTENCE_PATTERN.finditer(text or ""):
        sentence = match.group(0).strip()
        if sentence:
            sentences.append(sentence)
    return sentences


def filter_content(
    text: str,
    languages_to_remove: Iterable[str],
    profiles: LanguageProfiles = DEFAULT_PROFILES,
) -> Tuple[str, FilterStats]:
    """
    Drop every sentence attributed to one of the languages to remove.

    Sentences shorter than three characters are always kept. Kept sentences
    are joined with single spaces. Deterministic: the same input always
    gives the same output, and filtering the output again changes nothing.
    """
    text = text or ""
    removal = {tag.strip().lower() for tag in languages_to_remove if tag and tag.strip()}
    sentences = split_sentences(text)

    kept = []
    removed = 0
    per_language: Dict[str, int] = {}

    for sentence in sentences:
        if len(sentence) < MIN_SENTENCE_CHARS or not removal:
            kept.append(sentence)
            continue

        matched = attribute_languages(sentence, sorted(removal), profiles) & removal
        if matched:
            removed += 1
            for tag in sorted(matched):
                per_language[tag] = per_language.get(tag, 0) + 1
        else:
            kept.append(sentence)

    cleaned = " ".join(kept)
    stats = FilterStats(
        original_len=len(text),
        cleaned_len=len(cleaned),
        sentences_total=len(sentences),
        sentences_removed=removed,
        per_language_sentence_counts=per_language,
    )
    return cleaned, stats
