"""
URL routing for report endpoints.
"""
from django.urls import path
from . import views

app_name = 'reports'

urlpatterns = [
    path('reports/overview/', views.DashboardView.as_view(), name='report-overview'),
    path('reports/dashboard/', views.DashboardView.as_view(), name='report-dashboard'),
    path('reports/inventory/', views.InventoryReportView.as_view(), name='report-inventory'),
    path('reports/branches/', views.BranchReportView.as_view(), name='report-branches'),
    path('reports/transfers/', views.TransferReportView.as_view(), name='report-transfers'),
    path('reports/financial/', views.FinancialReportView.as_view(), name='report-financial'),
    path('reports/alerts/', views.AlertsReportView.as_view(), name='report-alerts'),
]
