"""Tests for index-page link discovery."""
import pytest

from apex_rag.rag.links import (
    GENERIC_SELECTOR,
    discover_links,
    extract_detail_links,
    href_to_page_name,
    selector_for,
)
from tests.fakes import FakeWikiClient

LEGENDS_HTML = """
<div class="character-grid">
  <a class="character-box-link" href="/wiki/Lifeline">Lifeline</a>
  <a class="character-box-link" href="/wiki/Wraith">Wraith</a>
  <a class="character-box-link" href="/wiki/Lifeline#Abilities">Lifeline again</a>
</div>
<a href="/wiki/Bangalore">Outside the grid</a>
"""

WEAPONS_HTML = """
<table class="wikitable sortable">
  <tr><th>Weapon</th><th>Ammo</th></tr>
  <tr><td><a href="/wiki/R-301_Carbine">R-301</a></td><td><a href="/wiki/Light_Rounds">Light</a></td></tr>
  <tr><td><a href="/wiki/Flatline">Flatline</a></td><td><a href="/wiki/Heavy_Rounds">Heavy</a></td></tr>
</table>
<table class="wikitable">
  <tr><td><a href="/wiki/Not_Sortable">ignored</a></td></tr>
</table>
"""

COSMETICS_HTML = """
<table class="wikitable">
  <tr><td><a href="/wiki/Skins">Skins</a></td><td><a href="/wiki/Rarity">Rarity</a></td></tr>
  <tr><td><a href="/wiki/Banners">Banners</a></td><td>-</td></tr>
</table>
"""

SEASONS_HTML = """
<div id="mw-content-text">
  <div class="div-col">
    <a href="/wiki/Season_1">Season 1</a>
    <a href="/wiki/Special:RecentChanges">Recent changes</a>
    <a href="/wiki/File:Season_2.png">Image</a>
    <a href="/wiki/Season_2?action=edit">Edit</a>
    <a href="https://example.com/wiki/Elsewhere">External</a>
    <a href="/wiki/Season_2">Season 2</a>
    <a>No href</a>
  </div>
  <table class="wikitable"><tr><td><a href="/wiki/Season_3">Season 3</a></td></tr></table>
</div>
<div class="div-col"><a href="/wiki/Outside_Content">Outside</a></div>
"""


def test_role_selectors_for_known_index_pages():
    assert selector_for("Legends") == ".character-grid .character-box-link"
    assert selector_for("Weapons") == ".wikitable.sortable tr td:first-child a"
    assert selector_for("Cosmetics") == ".wikitable tr td:first-child a"
    assert selector_for("Seasons") == GENERIC_SELECTOR
    assert selector_for("Events") == GENERIC_SELECTOR


def test_legends_grid_links_are_deduplicated():
    assert extract_detail_links(LEGENDS_HTML, "Legends") == ["Lifeline", "Wraith"]


def test_weapons_take_first_column_of_sortable_tables():
    assert extract_detail_links(WEAPONS_HTML, "Weapons") == ["R-301_Carbine", "Flatline"]


def test_cosmetics_take_first_column():
    assert extract_detail_links(COSMETICS_HTML, "Cosmetics") == ["Skins", "Banners"]


def test_generic_selector_filters_non_article_links():
    assert extract_detail_links(SEASONS_HTML, "Seasons") == [
        "Season_1",
        "Season_2",
        "Season_3",
    ]


@pytest.mark.parametrize(
    "href, expected",
    [
        ("/wiki/Lifeline", "Lifeline"),
        ("/wiki/Lifeline#Lore", "Lifeline"),
        ("/wiki/Category:Legends", ""),
        ("/wiki/Lifeline?action=edit&section=1", ""),
        ("https://apexlegends.wiki.gg/wiki/Lifeline", ""),
        ("#cite_note-1", ""),
        ("", ""),
    ],
)
def test_href_to_page_name(href, expected):
    assert href_to_page_name(href) == expected


@pytest.mark.asyncio
async def test_discover_links_fetches_index_page():
    client = FakeWikiClient({"Legends": LEGENDS_HTML})

    links = await discover_links(client, "Legends")

    assert links == ["Lifeline", "Wraith"]
    assert client.fetched == ["Legends"]


@pytest.mark.asyncio
async def test_discover_links_returns_empty_when_fetch_fails():
    client = FakeWikiClient({})

    assert await discover_links(client, "Weapons") == []
