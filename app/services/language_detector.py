"""Word-frequency language attribution for single sentences"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import FrozenSet, Iterable, List, Mapping, Set
import re
import unicodedata

from app.services.language_words import COMMON_WORDS

OTHER_LANGUAGE = "other"
MATCH_RATIO = 0.40
MIN_TOKENS = 3

TOKEN_PATTERN = re.compile(r"\b\w+\b")


@dataclass(frozen=True)
class LanguageProfiles:
    """Immutable common-word sets keyed by language tag"""
    words: Mapping[str, FrozenSet[str]] = field(default_factory=dict)

    def __post_init__(self):
        frozen = {tag.lower(): frozenset(words) for tag, words in self.words.items()}
        object.__setattr__(self, "words", MappingProxyType(frozen))

    def knows(self, tag: str) -> bool:
        return tag in self.words

    def is_known_word(self, token: str) -> bool:
        return any(token in words for words in self.words.values())


DEFAULT_PROFILES = LanguageProfiles(COMMON_WORDS)


def fold(text: str) -> str:
    """Lower-case and strip diacritics so 'für' and 'fur' compare equal"""
    text = text.lower().replace("ß", "ss")
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def tokenize(sentence: str) -> List[str]:
    return TOKEN_PATTERN.findall(fold(sentence))


def attribute_languages(
    sentence: str,
    candidates: Iterable[str],
    profiles: LanguageProfiles = DEFAULT_PROFILES,
) -> Set[str]:
    """
    Return the candidate languages this sentence is written in.

    A language matches when more than 40% of the sentence's tokens are in its
    common-word set. Sentences with fewer than three tokens never match, so
    short fragments are kept rather than removed. The pseudo-tag "other"
    matches when more than 40% of tokens belong to no known language.
    """
    tokens = tokenize(sentence)
    if len(tokens) < MIN_TOKENS:
        return set()

    total = len(tokens)
    matched = set()
    for tag in candidates:
        tag = tag.strip().lower()
        if tag == OTHER_LANGUAGE:
            unknown = sum(1 for token in tokens if not profiles.is_known_word(token))
            if unknown / total > MATCH_RATIO:
                matched.add(OTHER_LANGUAGE)
            continue

        if not profiles.knows(tag):
            continue
        words = profiles.words[tag]
        hits = sum(1 for token in tokens if token in words)
        if hits / total > MATCH_RATIO:
            matched.add(tag)

    return matched
