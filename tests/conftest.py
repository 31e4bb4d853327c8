"""Pytest configuration and fixtures."""
import pytest

from apex_rag.rag.html_parser import WikiPageParser


LIFELINE_HTML = """
<html>
<head><title>Lifeline - Apex Legends Wiki</title></head>
<body>
<h1 id="firstHeading">Lifeline</h1>
<div id="mw-content-text"><div class="mw-parser-output">
  <table class="infobox">
    <tr><th>Health</th><td>100</td></tr>
  </table>
  <div id="toc" class="toc"><ul><li>1 Overview and everything else worth listing here</li></ul></div>
  <h2><span class="mw-headline" id="Overview">Overview</span><span class="mw-editsection">[edit]</span></h2>
  <p>Lifeline is a combat medic who heals her squadmates and revives them quickly with her drone.</p>
  <table class="wikitable">
    <tr><th>Ability</th><th>Cooldown</th></tr>
    <tr><td>D.O.C. Heal Drone</td><td>45 seconds</td></tr>
    <tr><td>Care Package</td><td>240 seconds</td></tr>
  </table>
</div></div>
</body>
</html>
"""


@pytest.fixture
def lifeline_html() -> str:
    """Synthetic detail page: infobox, one heading, one paragraph, one table."""
    return LIFELINE_HTML


@pytest.fixture
def parser() -> WikiPageParser:
    """Parser with the default 50 character threshold."""
    return WikiPageParser(min_chunk_length=50)
