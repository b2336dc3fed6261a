"""Dispute letter templates rendered to .tex source.

Repair path: three dispute rounds per available bureau plus two personal-info
letters. Fundable path: two inquiry-removal letters plus the personal-info letters.
"""

import re
from dataclasses import dataclass
from datetime import date

from underwriteiq.models import Bureau, Bureaus

# Characters that are special in LaTeX and must be escaped in plain text.
_LATEX_SPECIAL = {
    "\\": r"\textbackslash{}",
    "&": r"\&",
    "%": r"\%",
    "$": r"\$",
    "#": r"\#",
    "_": r"\_",
    "{": r"\{",
    "}": r"\}",
    "~": r"\textasciitilde{}",
    "^": r"\textasciicircum{}",
}
_LATEX_ESCAPE_RE = re.compile("|".join(re.escape(c) for c in _LATEX_SPECIAL))

BUREAU_ADDRESSES = {
    "experian": ("Experian", "ex", ["P.O. Box 4500", "Allen, TX 75013"]),
    "transunion": ("TransUnion", "tu", ["P.O. Box 2000", "Chester, PA 19016"]),
    "equifax": ("Equifax", "eq", ["P.O. Box 740256", "Atlanta, GA 30374"]),
}

_DISPUTABLE = ("collection", "charge", "late", "derogatory", "closed")

_PREAMBLE = r"""\documentclass[letterpaper,11pt]{article}
\usepackage[margin=1in]{geometry}
\usepackage[T1]{fontenc}
\setlength{\parindent}{0pt}
\setlength{\parskip}{0.8em}
\pagestyle{empty}
\begin{document}
"""


@dataclass
class LetterSource:
    key: str  # ex_round1, inquiries_round2, personal_info_round1 ...
    filename: str
    tex: str


def escape_latex(text: str) -> str:
    """Escape special LaTeX characters in plain text (names, creditors, addresses)."""
    return _LATEX_ESCAPE_RE.sub(lambda m: _LATEX_SPECIAL[m.group()], text)


def _itemize(lines: list[str]) -> str:
    if not lines:
        return ""
    items = "\n".join(rf"  \item {escape_latex(line)}" for line in lines)
    return f"\\begin{{itemize}}\n{items}\n\\end{{itemize}}\n"


def _document(consumer: str, address: str | None, recipient: list[str], subject: str, body: str, today: date) -> str:
    recipient_block = r" \\ ".join(escape_latex(line) for line in recipient)
    consumer_block = escape_latex(consumer)
    if address:
        consumer_block += r" \\ " + escape_latex(address)
    return (
        _PREAMBLE
        + f"{today.strftime('%B %d, %Y').replace(' 0', ' ')}\n\n"
        + f"{consumer_block}\n\n"
        + f"{recipient_block}\n\n"
        + f"\\textbf{{{escape_latex(subject)}}}\n\n"
        + "To Whom It May Concern:\n\n"
        + body
        + "\nSincerely,\n\n"
        + f"{escape_latex(consumer)}\n"
        + "\\end{document}\n"
    )


def accounts_for_round(bureau: Bureau, round_no: int) -> list[str]:
    """Disputable tradelines, dealt round-robin across three rounds."""
    disputable = [
        tl for tl in bureau.tradelines
        if any(word in (tl.status or "").lower() for word in _DISPUTABLE)
    ]
    picked = [tl for index, tl in enumerate(disputable) if index % 3 == round_no - 1]
    return [f"{tl.creditor or 'Unknown creditor'} ({tl.status or 'status unknown'})" for tl in picked]


def _dispute_letter(key: str, bureau: Bureau, round_no: int, consumer: str, address: str | None, today: date) -> LetterSource:
    label, prefix, recipient = BUREAU_ADDRESSES[key]
    accounts = accounts_for_round(bureau, round_no)
    body = (
        "I am writing to dispute inaccurate information appearing on my credit report. "
        "Under the Fair Credit Reporting Act (FCRA), I have the right to dispute incomplete "
        "or inaccurate information.\n\n"
        "The following account(s) contain inaccurate information and I am requesting "
        "investigation and correction:\n\n"
        + (_itemize(accounts) or "No specific accounts identified for this round.\n")
        + "\nPlease investigate these items and remove or correct any information that cannot "
        "be verified as accurate and complete within 30 days as required by the FCRA.\n"
    )
    return LetterSource(
        key=f"{prefix}_round{round_no}",
        filename=f"{prefix}_round{round_no}.pdf",
        tex=_document(consumer, address, [label, *recipient], f"Re: Dispute of Inaccurate Information - Round {round_no}", body, today),
    )


def _inquiry_letter(bureaus: Bureaus, round_no: int, consumer: str, address: str | None, today: date) -> LetterSource:
    counts = [
        f"{BUREAU_ADDRESSES[key][0]}: {int(getattr(bureaus, key).inquiries)} inquiry(ies)"
        for key in bureaus.present()
        if (getattr(bureaus, key).inquiries or 0) > 0
    ]
    half = (len(counts) + 1) // 2
    picked = counts[:half] if round_no == 1 else counts[half:]
    body = (
        "I am writing to request the removal of unauthorized hard inquiries from my credit file. "
        "I did not authorize the following inquiries:\n\n"
        + (_itemize(picked) or "No inquiries identified for this round.\n")
        + "\nPlease remove any inquiry that cannot be verified with my written authorization.\n"
    )
    return LetterSource(
        key=f"inquiries_round{round_no}",
        filename=f"inquiries_round{round_no}.pdf",
        tex=_document(consumer, address, ["Credit Bureau Dispute Department"], f"Re: Unauthorized Inquiries - Round {round_no}", body, today),
    )


def _personal_info_letter(bureaus: Bureaus, round_no: int, consumer: str, address: str | None, today: date) -> LetterSource:
    names: dict[str, None] = {}
    addresses: dict[str, None] = {}
    employers: dict[str, None] = {}
    for key in bureaus.present():
        slot = getattr(bureaus, key)
        names.update(dict.fromkeys(slot.names))
        addresses.update(dict.fromkeys(slot.addresses))
        employers.update(dict.fromkeys(slot.employers))
    variations = (
        [f"Name: {n}" for n in names]
        + [f"Address: {a}" for a in addresses]
        + [f"Employer: {e}" for e in employers]
    )
    body = (
        "Please update my personal information. The following variations on my file are "
        "outdated or inaccurate and should be removed, keeping only my current legal name "
        "and address:\n\n"
        + (_itemize(variations) or "No variations identified.\n")
    )
    return LetterSource(
        key=f"personal_info_round{round_no}",
        filename=f"personal_info_round{round_no}.pdf",
        tex=_document(consumer, address, ["Credit Bureau Dispute Department"], f"Re: Personal Information Update - Round {round_no}", body, today),
    )


def build_letters(path: str, bureaus: Bureaus, consumer_name: str | None, today: date | None = None) -> list[LetterSource]:
    today = today or date.today()
    consumer = consumer_name or "[CONSUMER NAME]"
    address = next(
        (getattr(bureaus, key).addresses[0] for key in bureaus.present() if getattr(bureaus, key).addresses),
        None,
    )

    letters: list[LetterSource] = []
    if path == "repair":
        for key in bureaus.present():
            for round_no in (1, 2, 3):
                letters.append(_dispute_letter(key, getattr(bureaus, key), round_no, consumer, address, today))
    else:
        for round_no in (1, 2):
            letters.append(_inquiry_letter(bureaus, round_no, consumer, address, today))
    for round_no in (1, 2):
        letters.append(_personal_info_letter(bureaus, round_no, consumer, address, today))
    return letters
