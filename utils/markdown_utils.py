import logging

import markdown
from markdown.extensions import Extension
from markdown.treeprocessors import Treeprocessor
from xml.etree.ElementTree import Element


logger = logging.getLogger(__name__)

LINK_REL = "nofollow ugc noopener"


class CommunityMarkdownProcessor(Treeprocessor):
    def run(self, root):
        """Post-process the tree of a user-written description"""
        logger.debug("Running CommunityMarkdownProcessor")

        self.mark_external_links(root)
        self.wrap_tables(root)

    def mark_external_links(self, root):
        """Links in user content never pass ranking and open detached."""
        for link in root.iter("a"):
            href = link.get("href", "")
            if href.startswith("#"):
                continue
            link.set("rel", LINK_REL)
            link.set("target", "_blank")

    def wrap_tables(self, root):
        """Wrap <table> elements inside a scrollable <div>."""
        for table in list(root.iter("table")):
            parent = self.find_parent(root, table)
            if parent is None:
                continue
            index = list(parent).index(table)
            parent.remove(table)
            wrapper = Element("div", {"class": "table-wrapper"})
            wrapper.append(table)
            parent.insert(index, wrapper)

    def find_parent(self, root, child):
        """Finds the parent of an XML element."""
        for parent in root.iter():
            if child in list(parent):
                return parent
        return None


class CommunityMarkdownExtension(Extension):
    def extendMarkdown(self, md):
        # Raw HTML from posters is rendered as text
        if "html_block" in md.preprocessors:
            md.preprocessors.deregister("html_block")
        if "html" in md.inlinePatterns:
            md.inlinePatterns.deregister("html")
        md.treeprocessors.register(CommunityMarkdownProcessor(md), "community_markdown", 15)


def convert_markdown(md_text: str) -> str:
    """Convert a post description from Markdown to HTML."""
    extensions = [
        "tables",
        "fenced_code",
        "sane_lists",
        "nl2br",
        CommunityMarkdownExtension(),
    ]

    return markdown.markdown(md_text or "", extensions=extensions)
