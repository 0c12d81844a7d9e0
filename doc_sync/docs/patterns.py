"""
Idiom detection over raw source text.

Each rule is a tag plus regular expressions; a tag applies when any of its
expressions matches.  Everything here is pure: the same source always yields
the same tags.
"""

from __future__ import annotations

import re

_RULES: list[tuple[str, tuple[str, ...]]] = [
    ("React Hooks", (r"\buse(State|Effect|Context|Reducer|Memo|Callback|Ref)\s*\(",)),
    ("State Management", (r"\buseState\s*\(", r"\bsetState\s*\(", r"\buseReducer\s*\(",
                          r"\bcreateStore\s*\(", r"\bcreateSlice\s*\(")),
    ("Redux", (r"\bdispatch\s*\(", r"\buseSelector\s*\(", r"\bcreateSlice\s*\(",
               r"\bconnect\s*\(")),
    ("Side Effects", (r"\buseEffect\s*\(",)),
    ("HTTP Requests", (r"\bfetch\s*\(", r"\baxios\b", r"\brequests\.(get|post|put|patch|delete|request|Session)\b",
                       r"\bhttpx\b", r"\baiohttp\b", r"\bHttpClient\b", r"\burlopen\s*\(")),
    ("Async/Await", (r"\basync\s+(def|function)\b|\basync\s*\(|\basync\s+\w+\s*\(", r"\bawait\b")),
    ("Promises", (r"\.then\s*\(", r"\bnew\s+Promise\b", r"\bPromise\.(all|race|any|allSettled)\b",
                  r"\bCompletableFuture\b")),
    ("Error Handling", (r"\btry\s*[:{]", r"\bexcept\b", r"\bcatch\s*\(", r"\braise\s+\w",
                        r"\bthrow\s+new\b")),
    ("Local Storage", (r"\blocalStorage\b", r"\bsessionStorage\b")),
    ("Routing", (r"\buse(Navigate|Router|Params|Location)\s*\(", r"<Route\b", r"@\w+\.(route|get|post|put|delete)\(",
                 r"\bAPIRouter\b", r"\burlpatterns\b", r"@(Get|Post|Request)Mapping\b")),
    ("Form Handling", (r"\bonSubmit\b", r"<form\b", r"\buseForm\s*\(", r"\bFormData\b")),
    ("Event Handling", (r"\baddEventListener\s*\(", r"\bon[A-Z]\w*=\{", r"\.on\(\s*['\"]",
                        r"\bemit\s*\(")),
    ("Logging", (r"\blog(ger|ging)?\.(debug|info|warning|warn|error|exception|critical)\s*\(",
                 r"\bconsole\.(log|warn|error|info)\s*\(", r"\bSystem\.out\.print")),
    ("File I/O", (r"\bopen\s*\([^)]*['\"][rwab+]+['\"]", r"\bwith\s+open\s*\(", r"\bfs\.\w+",
                  r"\bFiles\.(read|write|lines|newBuffered)", r"\.read_text\s*\(", r"\.write_text\s*\(")),
    ("Generators", (r"\byield\b", r"\bfunction\s*\*")),
    ("Decorators", (r"^\s*@\w[\w.]*", )),
    ("Type Hints", (r"\)\s*->\s*[\w\[]", r"\w+\s*:\s*(str|int|float|bool|bytes|dict|list|Optional|List|Dict|string|number|boolean)\b")),
    ("Data Classes", (r"@dataclass\b", r"\bNamedTuple\b", r"\(BaseModel\)", r"\brecord\s+\w+\s*\(")),
    ("Database Access", (r"\bSELECT\s+.+\s+FROM\b", r"\bINSERT\s+INTO\b", r"\bcursor\s*\(",
                         r"\.execute\s*\(", r"\bsession\.query\s*\(", r"\bsqlite3\b",
                         r"\bmongoose\b", r"\bprisma\.")),
    ("Concurrency", (r"\bthreading\b", r"\bThreadPoolExecutor\b", r"\bLock\s*\(",
                     r"\bsynchronized\b", r"\bExecutorService\b", r"\basyncio\.(gather|create_task)\b")),
    ("Caching", (r"\blru_cache\b", r"@cache\b", r"\bmemoize\b", r"\buseMemo\s*\(", r"\bReact\.memo\b")),
    ("Testing", (r"^\s*assert\s", r"\bdescribe\s*\(\s*['\"]", r"\bexpect\s*\(", r"@Test\b",
                 r"\bpytest\b", r"\bunittest\b")),
]

_COMPILED: list[tuple[str, tuple[re.Pattern, ...]]] = [
    (tag, tuple(re.compile(p, re.MULTILINE) for p in patterns))
    for tag, patterns in _RULES
]

ALL_PATTERNS: tuple[str, ...] = tuple(tag for tag, _ in _RULES)


def detect_patterns(source_code: str) -> frozenset[str]:
    """
    Return the idiom tags found in *source_code*.

    >>> sorted(detect_patterns("async def f():\\n    await g()"))
    ['Async/Await']
    """
    if not source_code:
        return frozenset()
    return frozenset(
        tag for tag, regexes in _COMPILED
        if any(rx.search(source_code) for rx in regexes)
    )


def ordered(tags) -> list[str]:
    """Sort tags in rule order for stable display."""
    rank = {tag: i for i, tag in enumerate(ALL_PATTERNS)}
    return sorted(tags, key=lambda t: (rank.get(t, len(rank)), t))
