import re
from html import unescape

from bs4 import BeautifulSoup, NavigableString


def html_to_text(html: str) -> str:
    """Render a captured HTML fragment as plain text.

    Block elements become line breaks, list items become bullets and table
    cells are separated by two spaces.
    """
    if not html or "<" not in html:
        return unescape(html or "").strip()

    soup = BeautifulSoup(html, "lxml")

    for tag in soup.find_all(["script", "style", "head", "svg", "noscript"]):
        tag.decompose()

    for br in soup.find_all("br"):
        br.replace_with("\n")

    for tag in soup.find_all(["p", "div", "tr", "pre", "h1", "h2", "h3", "h4", "h5", "h6", "section"]):
        tag.insert(0, NavigableString("\n"))
        tag.append(NavigableString("\n"))

    for li in soup.find_all("li"):
        li.insert(0, NavigableString("\n- "))

    for cell in soup.find_all(["td", "th"]):
        cell.append(NavigableString("\t"))

    body = soup.find("body")
    text = unescape((body or soup).get_text())

    text = re.sub(r"\t+", "  ", text)
    text = re.sub(r"[ \u00a0]{3,}", "  ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def clip(text: str, limit: int) -> tuple[str, bool]:
    """Cut ``text`` to ``limit`` characters; report whether anything was lost."""
    if limit <= 0:
        return "", bool(text)
    if len(text) <= limit:
        return text, False
    return text[:limit], True
