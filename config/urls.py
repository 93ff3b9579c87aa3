from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("accounts/", include("django.contrib.auth.urls")),
    path("", include("haulage.urls")),
]

# Serve uploaded PODs and paperwork in development.
# In production, point the default storage at a bucket instead.
if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)


# admin customisation
admin.site.site_header = "Haulage Operations"
admin.site.site_title = "Haulage"
admin.site.index_title = "Haulage Portal"
