from django.urls import path
from . import views

app_name = "students"

urlpatterns = [
    path("students/", views.list_students, name="list"),
    path("students/search/automatic/", views.search_automatic, name="search_automatic"),
    path("students/search/manual/", views.search_manual, name="search_manual"),
    path("students/link/", views.link_student, name="link"),
]
