"""
Library functions used by the rarhash units. The parsers in this package do not depend on the
command line interface; they accept an optional unit only to use its logger.
"""
