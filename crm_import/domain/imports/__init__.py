"""
CSV import pipeline: format detection, column mapping, dry-run validation and
fault-isolated execution of import jobs.
"""
