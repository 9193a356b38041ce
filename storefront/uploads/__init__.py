"""Upload validation, categories and object storage"""
