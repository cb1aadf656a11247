"""Generates ``archive.html``, a list of every article, newest first.

Articles are the pages in the ``articles`` directory of the contents.
"""

from hoarfrost.tree import FilePath


def register(env):
    Page = env.plugins["Page"]

    class ArchivePage(Page):
        def __init__(self, articles):
            super().__init__(
                FilePath(full=env.resolve_contents_path("archive.html"), relative="archive.html"),
                {"title": "Archive", "template": "archive.html"},
            )
            self.articles = articles

        @property
        def name(self):
            return "ArchivePage"

        def get_html(self, base_url=None):
            return ""

    def archive(contents):
        articles = contents.get("articles")
        pages = articles.groups.get("pages", []) if articles is not None else []
        return {"archive.html": ArchivePage(sorted(pages, key=lambda page: page.date, reverse=True))}

    env.register_generator("archive", archive)
