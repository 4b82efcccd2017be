"""
Lint a .docx template before filling it.

What it checks:
1) RUN_SPLIT: ``{{ }}`` / ``{% %}`` markers spread over several runs of one
   paragraph. Filling still works (split runs are repaired on the fly), but
   the marker keeps only the first run's formatting.
2) UNKNOWN_PROPERTY: DOCPROPERTY fields naming a property that is not
   declared in docProps/custom.xml. Such fields are never updated.

Exit codes:
  0: ok
  2: issues found
  1: fatal error
"""
import re
from pathlib import Path
from typing import Dict, Iterable, List, Set, Tuple

from lxml import etree

from .archive import Archive
from .errors import DocumentMergeError
from .properties import read_custom_properties
from .xmlutil import NS, W_NS

PLACEHOLDER_RE = re.compile(r"({{.*?}}|{%.*?%})", flags=re.DOTALL)
DOCPROPERTY_RE = re.compile(r'DOCPROPERTY\s+(?:"([^"]+)"|(\S+))', re.IGNORECASE)

RUN_SPECIAL_TEXT = {
    "tab": "\t",
    "br": "\n",
    "cr": "\n",
    "noBreakHyphen": "‑",
    "softHyphen": "­",
}

_PARSER = etree.XMLParser(resolve_entities=False, huge_tree=True)


def _local(el: etree._Element) -> str:
    return etree.QName(el).localname


def paragraph_plain_text(p: etree._Element) -> str:
    return "".join(t.text or "" for t in p.iterfind(".//w:t", NS)).strip()


def run_text_streams(p: etree._Element) -> Tuple[List[str], List[int]]:
    """
    Return (run_texts, char_to_run_index).
    Special elements (tab, br, ...) count as text so a marker broken by them is caught.
    """
    run_texts: List[str] = []
    char_to_run: List[int] = []

    for run_idx, r in enumerate(p.iterfind(".//w:r", NS)):
        buf: List[str] = []
        for child in r:
            if not isinstance(child.tag, str):
                continue
            local = _local(child)
            if local == "t":
                buf.append(child.text or "")
            elif local in RUN_SPECIAL_TEXT:
                buf.append(RUN_SPECIAL_TEXT[local])
        s = "".join(buf)
        run_texts.append(s)
        char_to_run.extend([run_idx] * len(s))

    return run_texts, char_to_run


def check_run_split_placeholders(p: etree._Element, part_name: str, p_index: int) -> List[dict]:
    run_texts, char_to_run = run_text_streams(p)
    full_text = "".join(run_texts)
    if "{" not in full_text:
        return []

    issues: List[dict] = []
    for m in PLACEHOLDER_RE.finditer(full_text):
        start, end = m.span()
        run_start = char_to_run[start]
        run_end = char_to_run[end - 1]
        if run_start != run_end:
            issues.append(
                {
                    "type": "RUN_SPLIT",
                    "part": part_name,
                    "p_index": p_index,
                    "placeholder": m.group(0).replace("\n", "\\n"),
                    "text": paragraph_plain_text(p) or "[empty paragraph]",
                    "run_start": run_start + 1,
                    "run_end": run_end + 1,
                }
            )
    return issues


def field_instructions(root: etree._Element) -> Iterable[str]:
    """Instruction text of every simple and complex field in document order."""
    buf: List[str] = []
    collecting = False
    fld_char_type = f"{{{W_NS}}}fldCharType"
    for el in root.iter(f"{{{W_NS}}}fldSimple", f"{{{W_NS}}}fldChar", f"{{{W_NS}}}instrText"):
        local = _local(el)
        if local == "fldSimple":
            yield el.get(f"{{{W_NS}}}instr", "")
        elif local == "instrText":
            if collecting:
                buf.append(el.text or "")
        else:
            kind = el.get(fld_char_type)
            if kind == "begin":
                buf, collecting = [], True
            elif kind in ("separate", "end") and collecting:
                collecting = False
                yield "".join(buf)


def check_unknown_properties(root: etree._Element, part_name: str, known: Set[str]) -> List[dict]:
    issues: List[dict] = []
    for instr in field_instructions(root):
        m = DOCPROPERTY_RE.search(instr)
        if not m:
            continue
        name = m.group(1) or m.group(2)
        if name.casefold() not in known:
            issues.append({"type": "UNKNOWN_PROPERTY", "part": part_name, "name": name})
    return issues


def collect_issues(archive: Archive) -> List[dict]:
    issues: List[dict] = []
    known = {name.casefold() for name in read_custom_properties(archive)}
    for part_name in archive.document_parts():
        try:
            root = etree.fromstring(archive.read_bytes(part_name), parser=_PARSER)
        except etree.XMLSyntaxError as exc:
            issues.append({"type": "MALFORMED_PART", "part": part_name, "text": str(exc)})
            continue
        for idx, p in enumerate(root.iterfind(".//w:p", NS)):
            issues.extend(check_run_split_placeholders(p, part_name, idx))
        issues.extend(check_unknown_properties(root, part_name, known))
    return issues


def format_issue(item: Dict[str, str]) -> str:
    t = item["type"]
    if t == "RUN_SPLIT":
        return (
            f"RUN_SPLIT {item['part']}#p{item['p_index']} runs {item['run_start']}-{item['run_end']}: "
            f"{item['placeholder']} | {item['text']}"
        )
    if t == "UNKNOWN_PROPERTY":
        return f"UNKNOWN_PROPERTY {item['part']}: {item['name']}"
    return f"{t} {item['part']}: {item.get('text', '')}"


def run_checks(docx: Path, max_issues: int = 200) -> int:
    docx = Path(docx)
    if not docx.exists():
        print(f"[ERROR] file not found: {docx}")
        return 1
    try:
        archive = Archive.open(docx.read_bytes())
        issues = collect_issues(archive)
    except DocumentMergeError as exc:
        print(f"[ERROR] {exc}")
        return 1

    if not issues:
        print("[OK] no issues found.")
        return 0

    print(f"[WARN] issues found: {min(len(issues), max_issues)}/{len(issues)}")
    for item in issues[:max_issues]:
        print(format_issue(item))
    return 2
