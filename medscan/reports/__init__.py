# medscan/reports/__init__.py
from .pdf import LETTERHEADS, render_report_pdf, report_filename, save_report

__all__ = ["LETTERHEADS", "render_report_pdf", "report_filename", "save_report"]
