from nexus_search.crawler.parser import ContentParser


def test_parse_extracts_title_markdown_and_links():
    html = """
    <html>
      <head>
        <title>
          Docs   Home
        </title>
        <style>body { color: red; }</style>
      </head>
      <body>
        <script>trackVisitor();</script>
        <!-- navigation -->
        <h2>Getting started</h2>
        <p>Install the package and run it.</p>
        <a href="guide/">Guide</a>
        <a href="/docs/guide">Guide again</a>
        <a href="/logo.png">Logo</a>
        <a href="https://twitter.com/docs">Twitter</a>
      </body>
    </html>
    """
    parsed = ContentParser().parse("https://example.com/docs/", html)

    assert parsed.title == "Docs Home"
    assert parsed.links == ["https://example.com/docs/guide"]
    assert "Getting started" in parsed.markdown
    assert "Install the package" in parsed.markdown
    assert "trackVisitor" not in parsed.markdown
    assert "navigation" not in parsed.markdown
    assert "color: red" not in parsed.markdown


def test_fetcher_title_preferred():
    parsed = ContentParser().parse("https://example.com", "<title>Tag</title><p>x</p>", title="Given")
    assert parsed.title == "Given"


def test_empty_document():
    parsed = ContentParser().parse("https://example.com", "")
    assert parsed.title == ""
    assert parsed.markdown == ""
    assert parsed.links == []
