from digest_citations.citations.formatting import CitationStyle, extract_publisher, format_citation
from digest_citations.citations.parser import CitationParser, format_citation_number
from digest_citations.citations.resolver import CitationAudit, CitationResolver

__all__ = [
    "CitationAudit",
    "CitationParser",
    "CitationResolver",
    "CitationStyle",
    "extract_publisher",
    "format_citation",
    "format_citation_number",
]
