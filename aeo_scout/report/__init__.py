# File: aeo_scout/report/__init__.py
"""aeo_scout.report: генерация отчётов (JSON и HTML) для CLI и тестов."""

from aeo_scout.report.html_report import render_html
from aeo_scout.report.json_report import render_json

__all__ = ["render_json", "render_html"]
