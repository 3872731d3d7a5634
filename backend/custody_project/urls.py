"""
URL configuration for custody_project project.
"""
from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/auth/', include('accounts.urls')),
    path('api/equipment/', include('equipment.urls')),
    path('api/audit/', include('audit.urls')),
]
