"""
URL configuration for scc_portal project.

The registration API lives under /api/; server-side exports are served
from EXPORTS_DIR under /exports/ while DEBUG is on.
"""
from django.conf import settings
from django.contrib import admin
from django.urls import include, path, re_path
from django.views.static import serve

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('registrations.urls')),
]

if settings.DEBUG:
    urlpatterns += [
        re_path(r'^exports/(?P<path>.*)$', serve, {'document_root': settings.EXPORTS_DIR}),
    ]
