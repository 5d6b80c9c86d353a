"""
URL routing for transfer API endpoints.
"""
from django.urls import path
from . import views

app_name = 'transfers'

urlpatterns = [
    path('transfers/', views.TransferCreateView.as_view(), name='transfer-create'),
    path('transfers/branch/', views.BranchTransferCreateView.as_view(), name='transfer-branch'),
    path('transfers/history/', views.TransferHistoryView.as_view(), name='transfer-history'),
    path('transfers/reconcile/<str:branch_ref>/', views.ReconcileBranchView.as_view(), name='transfer-reconcile'),
    path('transfers/<str:tracking_number>/', views.TransferDetailView.as_view(), name='transfer-detail'),
]
