"""Vector dedup for enriched questions.

Each question is either merged into the nearest stored article (inner-product
distance below the threshold) or inserted as a new article.
"""
