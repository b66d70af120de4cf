"""
Root URL configuration.
"""

from django.urls import include, path

urlpatterns = [
    path("api/loyalty/", include("loyalty.urls")),
]
