# Services package init
"""
LoveCakes Backend — Services Layer
====================================

What:  Everything between the HTTP routes and SQL Server.
How:   Route handlers validate with CrudController, then call stored
       procedures through the ProcedureGateway (injected via get_gateway).

Service Inventory:
    - procedure_service.ProcedureGateway: runs stored procedures, shapes
      result sets, maps driver failures to application errors
    - crud_controller.CrudController: request validation + credential
      pass-through for create/read/update/delete handlers
    - redaction.RedactionPolicy: allow-list masking of parameters in logs

All business rules live in the stored procedures; this layer adds no
domain logic of its own.
"""
