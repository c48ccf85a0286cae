"""Exam paper ingestion tools package."""


def app_main(*args, **kwargs):
    from .app import main

    return main(*args, **kwargs)


def pipeline_main(*args, **kwargs):
    from .pipeline import main

    return main(*args, **kwargs)


def pdf_pages_main(*args, **kwargs):
    from .pdf_pages import main

    return main(*args, **kwargs)


__all__ = ["app_main", "pdf_pages_main", "pipeline_main"]
