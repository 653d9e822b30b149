"""
Extraction Prompts
==================

Version: 0.1.0
"""

from services.regulatory_truth.taxonomy import ConceptTaxonomy


EXTRACTOR_SYSTEM_PROMPT = """\
You extract atomic regulatory facts from official source text.

Extract ONLY values that are explicitly written in the text. Never infer,
calculate or convert a value that is not stated character for character.
If the text mentions a threshold but does not state the number, skip it.

For every fact return:
- concept: kebab-case concept slug (use a known concept when one applies)
- value_kind: one of "threshold", "rate", "date", "choice"
- value: the value as written (amount, percent without the % sign,
  ISO date YYYY-MM-DD, or the chosen option)
- currency: ISO 4217 code for thresholds, otherwise null
- effective_from: ISO date from which the value applies
- effective_until: ISO date on which it stops applying, or null
- exact_quote: a VERBATIM passage from the text that CONTAINS the value
- confidence: 0.0-1.0 (1.0 explicit and unambiguous; below 0.8 do not extract)
- notes: ambiguity worth flagging, or null

Fewer correct facts beat many doubtful ones.
"""


def build_extraction_prompt(
    chunk_text: str,
    source_url: str,
    taxonomy: ConceptTaxonomy,
    chunk_index: int = 0,
    total_chunks: int = 1,
) -> str:
    concept_lines = "\n".join(
        f"- {c.slug} ({c.value_kind.value if c.value_kind else 'any'})"
        + (f": {c.description}" if c.description else "")
        for c in taxonomy.concepts
    )
    return f"""Source: {source_url}
Part {chunk_index + 1} of {total_chunks}

Known concepts:
{concept_lines}

Text:
<<<
{chunk_text}
>>>

Return JSON: {{"facts": [{{"concept": "...", "value_kind": "...", "value": "...",
"currency": null, "effective_from": "YYYY-MM-DD", "effective_until": null,
"exact_quote": "...", "confidence": 0.0, "notes": null}}]}}
Return {{"facts": []}} if the text states no such values."""
