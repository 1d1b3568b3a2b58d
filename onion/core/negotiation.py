"""
Content negotiation over Accept, Accept-Encoding, Accept-Charset and
Accept-Language request headers.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

from .utils import lookup_mime


@dataclass
class AcceptedValue:
    value: str
    q: float
    index: int
    params: Dict[str, str] = field(default_factory=dict)


def _split_q(part: str):
    pieces = [p.strip() for p in part.split(";")]
    value, params, q = pieces[0], {}, 1.0
    for piece in pieces[1:]:
        key, _, raw = piece.partition("=")
        key = key.strip().lower()
        raw = raw.strip().strip('"')
        if key == "q":
            try:
                q = float(raw)
            except ValueError:
                q = 0.0
        elif key:
            params[key] = raw
    return value, params, q


def parse_accept(header: Optional[str]) -> List[AcceptedValue]:
    accepted = []
    for index, part in enumerate((header or "").split(",")):
        if not part.strip():
            continue
        value, params, q = _split_q(part)
        if value:
            accepted.append(AcceptedValue(value, q, index, params))
    return accepted


def _media_specificity(accepted: AcceptedValue, provided: str) -> Optional[int]:
    acc_type, _, acc_sub = accepted.value.lower().partition("/")
    base = provided.lower().split(";", 1)[0]
    prov_type, _, prov_sub = base.strip().partition("/")
    _, prov_params, _ = _split_q(provided)

    score = 0
    if acc_type == prov_type:
        score |= 4
    elif acc_type != "*":
        return None
    if acc_sub == prov_sub:
        score |= 2
    elif acc_sub != "*":
        return None
    if accepted.params:
        if any(prov_params.get(k, "").lower() != v.lower() for k, v in accepted.params.items() if v != "*"):
            return None
        score |= 1
    return score


def _token_specificity(accepted: AcceptedValue, provided: str) -> Optional[int]:
    if accepted.value.lower() == provided.lower():
        return 1
    if accepted.value == "*":
        return 0
    return None


def _language_specificity(accepted: AcceptedValue, provided: str) -> Optional[int]:
    acc_full = accepted.value.lower()
    prov_full = provided.lower()
    acc_prefix = acc_full.split("-", 1)[0]
    prov_prefix = prov_full.split("-", 1)[0]
    if acc_full == prov_full:
        return 4
    if acc_prefix == prov_full:
        return 2
    if acc_full == prov_prefix:
        return 1
    if acc_full == "*":
        return 0
    return None


def negotiate(
    accepted: List[AcceptedValue],
    provided: Optional[Sequence[str]],
    specificity: Callable[[AcceptedValue, str], Optional[int]],
) -> List[str]:
    """Order provided values by the client's preference, dropping q=0 ones."""
    if provided is None:
        ordered = sorted((a for a in accepted if a.q > 0), key=lambda a: (-a.q, a.index))
        return [a.value for a in ordered]

    ranked = []
    for position, value in enumerate(provided):
        best = None
        for candidate in accepted:
            score = specificity(candidate, value)
            if score is None:
                continue
            key = (score, candidate.q, candidate.index)
            if best is None or key > best:
                best = key
        if best is not None and best[1] > 0:
            score, q, index = best
            ranked.append((-q, -score, index, position, value))
    ranked.sort()
    return [item[-1] for item in ranked]


class Accepts:
    """
    Negotiation object built once per request from its headers.

    Each method returns the caller's best option (in the caller's own
    spelling) or False, or every acceptable value when called without
    arguments.
    """

    def __init__(self, headers: Mapping[str, str]):
        self.headers = headers

    def types(self, *types: Union[str, Sequence[str]]) -> Union[str, bool, List[str]]:
        types = _flatten(types)
        header = self.headers.get("accept")
        if not types:
            return negotiate(parse_accept(header or "*/*"), None, _media_specificity)
        if not header:
            return types[0]
        mimes = [lookup_mime(t) if "/" not in t else t for t in types]
        valid = [m for m in mimes if m]
        ordered = negotiate(parse_accept(header), valid, _media_specificity)
        if not ordered:
            return False
        return types[mimes.index(ordered[0])]

    def encodings(self, *encodings: Union[str, Sequence[str]]) -> Union[str, bool, List[str]]:
        encodings = _flatten(encodings)
        accepted = parse_accept(self.headers.get("accept-encoding"))
        if not any(a.value.lower() in ("identity", "*") for a in accepted):
            min_q = min((a.q for a in accepted), default=1.0)
            accepted.append(AcceptedValue("identity", min_q, len(accepted)))
        if not encodings:
            return negotiate(accepted, None, _token_specificity)
        ordered = negotiate(accepted, encodings, _token_specificity)
        return ordered[0] if ordered else False

    def charsets(self, *charsets: Union[str, Sequence[str]]) -> Union[str, bool, List[str]]:
        return self._simple("accept-charset", _flatten(charsets), _token_specificity)

    def languages(self, *languages: Union[str, Sequence[str]]) -> Union[str, bool, List[str]]:
        return self._simple("accept-language", _flatten(languages), _language_specificity)

    def _simple(self, header_name, provided, specificity):
        header = self.headers.get(header_name)
        accepted = parse_accept("*" if header is None else header)
        if not provided:
            return negotiate(accepted, None, specificity)
        ordered = negotiate(accepted, provided, specificity)
        return ordered[0] if ordered else False


def _flatten(values) -> List[str]:
    flat = []
    for value in values:
        if isinstance(value, (list, tuple)):
            flat.extend(value)
        else:
            flat.append(value)
    return flat
