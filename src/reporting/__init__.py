"""Run report rendering."""

from reporting.report import RunReport, format_summary

__all__ = ['RunReport', 'format_summary']
