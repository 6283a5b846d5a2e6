"""Receipt line classification and field extraction.

Turns raw OCR text from a scanned receipt into a structured record
(merchant, date, total, line items) using a WordPiece tokenizer, a
per-line transformer classifier, and a rule-based field aggregator.
"""
