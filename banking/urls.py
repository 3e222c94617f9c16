from django.urls import path

from . import views

app_name = "banking"

urlpatterns = [
    path("accounts/<int:account_id>/imports/", views.ImportBatchView.as_view(), name="import-batch"),
    path("accounts/<int:account_id>/transactions/", views.TransactionListView.as_view(), name="transactions"),
    path("accounts/<int:account_id>/auto-match/", views.AutoMatchView.as_view(), name="auto-match"),
    path("accounts/<int:account_id>/summary/", views.AccountSummaryView.as_view(), name="account-summary"),
    path("transactions/<int:transaction_id>/suggestions/", views.SuggestionsView.as_view(), name="suggestions"),
    path("transactions/<int:transaction_id>/apply/", views.ApplyMatchView.as_view(), name="apply-match"),
    path(
        "transactions/<int:transaction_id>/reject-suggestions/",
        views.RejectSuggestionsView.as_view(),
        name="reject-suggestions",
    ),
    path("settlements/<int:settlement_id>/reverse/", views.ReverseSettlementView.as_view(), name="reverse-settlement"),
]
