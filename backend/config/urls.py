"""
URL configuration for backend project.

The `urlpatterns` list routes URLs to views. Each app mounts its own
urls module under the versioned API prefix.
"""
from django.contrib import admin
from django.urls import path, include

admin.site.site_header = "Footsteps Furniture Admin Panel"
admin.site.site_title = "Footsteps Furniture Admin Portal"
admin.site.index_title = "Welcome to the Footsteps Furniture POS Admin"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('backend.core.urls')),
    path('api/v1/', include('backend.locations.urls')),
    path('api/v1/', include('backend.catalog.urls')),
    path('api/v1/', include('backend.inventory.urls')),
    path('api/v1/', include('backend.parties.urls')),
    path('api/v1/', include('backend.pos.urls')),
]
