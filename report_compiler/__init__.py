"""Ad-hoc report query compiler.

Turns a declarative report selection (models, joins, filters, derived fields,
one active visual) into a canonical query configuration and executes it either
synchronously or as a pollable background job.
"""

__version__ = "0.1.0"
