from django.urls import path

from api import views

urlpatterns = [
    path("health/", views.health, name="health"),
    path("auth/whoami/", views.whoami, name="whoami"),
    path("auth/dev-users/", views.dev_users, name="dev_users"),
]
