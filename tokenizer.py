"""
Sentence tokenizer reproducing the LUIS word segmentation rules.

LUIS labels entities with token indices when reading examples but expects
character offsets when creating them, so every annotation crosses this
tokenizer. Any divergence from the service segmentation silently corrupts
entity spans; ``check_predictions`` reports such divergences.
"""
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Tuple

from luis_api.exceptions import EntityRangeError

# Whitespace as understood by the service (ECMAScript \s, which includes BOM)
WHITESPACE = (
    '\t\n\x0b\x0c\r \xa0'
    '\u1680\u2000-\u200a\u2028\u2029\u202f\u205f\u3000\ufeff'
)

# Characters LUIS considers part of a word. Anything else is a token on its own.
WORD_CHARS = (
    '0-9A-Za-z'  # Numbers and English letters
    '\u00aa\u00ba'  # Ordinal indicators
    '\u00b5'  # Micro sign
    '\u00c0-\u00d6\u00d8-\u00f6\u00f8-\u02af'  # Non-english latin letters (accents and others)
    '\u02b0-\u02c1'  # Modifier letters
    '\u0370-\u0374\u0376-\u0377\u037a-\u037d\u0386\u0388-\u038a\u038c\u038e-\u03a1\u03a3-\u03ff'  # Greek and Coptic
    '\u0400-\u0481\u048a-\u0523'  # Cyrillic
)

_WORD = re.compile(f'[{WORD_CHARS}]+')
_NON_WORD = re.compile(f'[^{WHITESPACE}{WORD_CHARS}]')
_LEADING_SPACES = re.compile(f'[{WHITESPACE}]*')
_TRAILING_SPACES = re.compile(f'[{WHITESPACE}]+\\Z')
_ASTRAL = re.compile('[\\U00010000-\\U0010ffff]')


def _surrogate_pair(match) -> str:
    code = ord(match.group(0)) - 0x10000
    return chr(0xD800 + (code >> 10)) + chr(0xDC00 + (code & 0x3FF))


def utf16_units(text: str) -> str:
    """
    Rewrite every character outside the Basic Multilingual Plane as its
    surrogate pair, so that string indices count UTF-16 code units.

    The service segments and labels UTF-16 strings: an emoji is two
    one-unit tokens, adding one to every following token index and offset.
    """
    return _ASTRAL.sub(_surrogate_pair, text)


def from_utf16_units(units: str) -> str:
    """Join surrogate pairs back into characters, keeping unpaired halves"""
    return units.encode('utf-16-le', 'surrogatepass').decode('utf-16-le', 'surrogatepass')


@dataclass(frozen=True)
class Token:
    """A token and its offsets in UTF-16 code units (end inclusive)"""
    text: str
    start_char: int
    end_char: int


@dataclass(frozen=True)
class EntitySpan:
    """Text and UTF-16 offsets covered by a token-indexed entity annotation"""
    word: str
    start_char: int
    end_char: int


@lru_cache(maxsize=4096)
def _segment(text: str) -> Tuple[Token, ...]:
    text = _TRAILING_SPACES.sub('', utf16_units(text))
    tokens = []
    cursor = 0
    while cursor < len(text):
        cursor = _LEADING_SPACES.match(text, cursor).end()

        match = _WORD.match(text, cursor) or _NON_WORD.match(text, cursor)
        if match is None:
            # Unreachable while WHITESPACE and the non-word class are complementary
            raise ValueError(f"The sentence {text[cursor:]!r} cannot be classified as word or non-word")

        token = match.group(0)
        tokens.append(Token(token, cursor, cursor + len(token) - 1))
        cursor += len(token)

    return tuple(tokens)


def segment(text: str) -> List[Token]:
    """
    Split a sentence into LUIS tokens.

    A token is a maximal run of word characters or a single character that is
    neither a word character nor whitespace. Whitespace is skipped.

    Args:
        text: Sentence to segment

    Returns:
        Tokens in order, with inclusive offsets counted in UTF-16 code units.
        They equal character offsets unless ``text`` has characters outside
        the Basic Multilingual Plane, each of which yields two tokens holding
        one surrogate each.
    """
    if not text:
        return []
    return list(_segment(text))


def tokenize(text: str) -> List[str]:
    """Tokenize a sentence following the LUIS rules and return the token strings"""
    return [token.text for token in segment(text)]


def resolve_entity_span(text: str, start_token: int, end_token: int) -> EntitySpan:
    """
    Translate a token-indexed entity annotation into UTF-16 offsets, the
    offsets the service expects when creating examples.

    Raises:
        EntityRangeError: when either index falls outside the sentence tokens
    """
    tokens = segment(text)
    for index in (start_token, end_token):
        if index < 0 or index >= len(tokens):
            raise EntityRangeError(
                f"Entity positions are out of range: [{start_token}, {end_token}] "
                f"for {len(tokens)} token(s) in {text!r}"
            )

    start_char = tokens[start_token].start_char
    end_char = tokens[end_token].end_char
    word = from_utf16_units(utf16_units(text)[start_char:end_char + 1])
    return EntitySpan(word, start_char, end_char)
