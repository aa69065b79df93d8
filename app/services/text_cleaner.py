"""
HTML -> plain text conversion for message bodies.

Used when a message carries only an HTML part, so that snippets and
search have something to match against.
"""

import re
from bs4 import BeautifulSoup


def html_to_text(raw_html: str) -> str:
    """
    Convert HTML email content to plain text.

    Args:
        raw_html: Raw HTML string from email body

    Returns:
        Plain text with normalized whitespace
    """
    if not raw_html:
        return ""

    soup = BeautifulSoup(raw_html, "html.parser")

    # Remove script, style, and head tags
    for tag in soup(['script', 'style', 'head', 'meta', 'link']):
        tag.decompose()

    # Convert <br> and </p> to newlines
    for br in soup.find_all('br'):
        br.replace_with('\n')
    for p in soup.find_all('p'):
        p.insert_after('\n')

    text = soup.get_text(separator=' ')

    # Normalize whitespace
    text = re.sub(r'[ \t]+', ' ', text)  # Multiple spaces to single
    text = re.sub(r' *\n *', '\n', text)
    text = re.sub(r'\n{3,}', '\n\n', text)  # Max 2 newlines

    return text.strip()
