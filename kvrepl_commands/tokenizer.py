"""
Command-Line Tokenizer
======================

Splits one typed line into words, honoring single and double quotes
so that keys and values may contain spaces.

Grammar
-------
Words are separated by single spaces (0x20). A word may be wrapped in
matching quotes to admit spaces:

    write greeting "hello world"       →  write | greeting | hello world
    write note 'say "hi" twice'        →  write | note | say "hi" twice
    write empty ""                     →  write | empty | (empty string)

The other kind of quote nests literally inside a group, so "it's" and
'the "best"' both work. There is no backslash escaping.

Separators are not collapsed: two spaces in a row produce an empty
word between them. The caller decides what an empty word means
(for ``write`` it is a perfectly good empty value).

Quote Stripping
---------------
When a quote group closes, the word is marked quoted and exactly one
leading and one trailing character are dropped when the word is read.
For the usual ``"..."`` word those are the quotes themselves.

Errors
------
A quote still open at the end of the line raises QuoteSyntaxError,
positioned at the opening quote so the REPL can draw a caret under it.

Module Contents
---------------
    Token       Frozen dataclass: a (start, end, quoted) view of the line
    tokenize()  Line → list[Token] (or QuoteSyntaxError)
    split()     Line → list[str], the token texts
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from kvrepl_commands.errors import QuoteSyntaxError

logger = logging.getLogger(__name__)

QUOTE_CHARS = ("'", '"')
SEPARATOR = " "
UNCLOSED_QUOTE_MESSAGE = "expected quotes or double quotes to be closed"


@dataclass(frozen=True)
class Token:
    """One word of the input line.

    A view, not a copy: ``start``/``end`` index into ``line`` and span
    the raw word including any enclosing quotes. Tokens live only as
    long as the command they were parsed for.

    Attributes
    ----------
    line : str
        The full input line.
    start : int
        Index of the first character of the raw word.
    end : int
        Index one past the last character of the raw word.
    quoted : bool
        True if the word closed a quote group; one character is then
        dropped from each end when reading ``text``.
    """
    line: str
    start: int
    end: int
    quoted: bool = False

    @property
    def text(self) -> str:
        """The word's value, enclosing quotes stripped."""
        if self.quoted:
            return self.line[self.start + 1:self.end - 1]
        return self.line[self.start:self.end]

    def __str__(self) -> str:
        return self.text


def tokenize(line: str) -> list[Token]:
    """Split an input line into tokens in a single left-to-right pass.

    Parameters
    ----------
    line : str
        One raw line, without the trailing newline. Callers skip empty
        lines before getting here.

    Returns
    -------
    list[Token]
        Never empty: at least the final word is always emitted.

    Raises
    ------
    QuoteSyntaxError
        If a quote group is still open at the end of the line.
    """
    tokens: list[Token] = []
    token_start = 0
    quoting = False
    quote_char = ""
    quote_start = 0
    quoted_token = False

    for i, char in enumerate(line):
        if char in QUOTE_CHARS:
            if not quoting:
                quoting = True
                quote_char = char
                quote_start = i
            elif char == quote_char:
                quoting = False
                quoted_token = True
            # a different quote inside a group is plain text
            continue

        if char != SEPARATOR or quoting:
            continue

        tokens.append(Token(line, token_start, i, quoted_token))
        token_start = i + 1
        quoted_token = False

    if quoting:
        raise QuoteSyntaxError(quote_start, UNCLOSED_QUOTE_MESSAGE, line)

    tokens.append(Token(line, token_start, len(line), quoted_token))
    logger.debug(f"Tokenized {line!r} into {[t.text for t in tokens]}")
    return tokens


def split(line: str) -> list[str]:
    """Like tokenize(), but return the token texts."""
    return [token.text for token in tokenize(line)]
