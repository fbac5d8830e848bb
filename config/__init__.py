"""Django project package for the site incident manager."""

from config.celery import app as celery_app

__all__ = ("celery_app",)
