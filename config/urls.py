from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    # parent session bootstrap
    path("parents/", include("accounts.urls")),
    # portal sections
    path("schools/", include("schools.urls")),
    path("fees/", include("fees.urls")),
    # student matching and linking
    path("", include("students.urls")),
]
