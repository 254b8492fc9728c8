"""
URL routing for the content app.
"""
from django.urls import path

from . import views

urlpatterns = [
    path('depth/', views.link_depth, name='link-depth'),
    path('patterns/', views.link_patterns, name='link-patterns'),
]
