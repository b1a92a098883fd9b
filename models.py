from __future__ import annotations

from sqlalchemy import Boolean, Column, Float, Integer, String, Text, UniqueConstraint

from db import Base


class IdCounter(Base):
    __tablename__ = "id_counters"

    key = Column(String, primary_key=True)
    nextValue = Column(Integer, nullable=False, default=1)


class Tenant(Base):
    __tablename__ = "tenants"

    tenantId = Column(String, primary_key=True)
    name = Column(Text, nullable=False, default="")
    slug = Column(String, nullable=False, unique=True, index=True)
    email = Column(String, nullable=False, unique=True, index=True)
    status = Column(String, nullable=False, default="active", index=True)
    plan = Column(String, nullable=False, default="free")
    settingsJson = Column(Text, nullable=False, default="")
    brandingJson = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class User(Base):
    __tablename__ = "users"

    userId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    email = Column(String, nullable=False, unique=True, index=True)
    fullName = Column(Text, nullable=False, default="")
    role = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="ACTIVE", index=True)
    passwordHash = Column(Text, nullable=False, default="")
    # Links a login to an employee record (self-service attendance/leave/evaluations).
    employeeId = Column(String, nullable=False, default="", index=True)
    # Bump to invalidate every session issued before.
    authVersion = Column(Integer, nullable=False, default=0)
    lastLoginAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Role(Base):
    """Tenant-defined custom role. Built-in roles live in auth.BUILTIN_ROLES."""

    __tablename__ = "roles"
    __table_args__ = (UniqueConstraint("tenantId", "roleCode", name="uq_roles_tenant_code"),)

    roleId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    roleCode = Column(String, nullable=False)
    roleName = Column(String, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    permissionsCsv = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="ACTIVE")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Permission(Base):
    __tablename__ = "permissions"
    __table_args__ = (UniqueConstraint("tenantId", "permType", "permKey", name="uq_permissions_tenant_type_key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    permType = Column(String, nullable=False)
    permKey = Column(String, nullable=False)
    rolesCsv = Column(Text, nullable=False, default="")
    enabled = Column(Boolean, nullable=False, default=True)
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Session(Base):
    __tablename__ = "sessions"

    sessionId = Column(String, primary_key=True)
    tokenHash = Column(String, nullable=False, unique=True, index=True)
    tokenPrefix = Column(String, nullable=False, default="", index=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    userId = Column(String, nullable=False, default="", index=True)
    email = Column(String, nullable=False, default="")
    role = Column(String, nullable=False, default="", index=True)
    userStatus = Column(String, nullable=False, default="", index=True)
    authVersion = Column(Integer, nullable=False, default=0)
    issuedAt = Column(Text, nullable=False, default="")
    expiresAt = Column(Text, nullable=False, default="")
    lastSeenAt = Column(Text, nullable=False, default="")
    revokedAt = Column(Text, nullable=False, default="")
    revokedBy = Column(String, nullable=False, default="")


class AuditLog(Base):
    __tablename__ = "audit_log"

    logId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    entityType = Column(String, nullable=False, default="", index=True)
    entityId = Column(String, nullable=False, default="", index=True)
    action = Column(String, nullable=False, default="", index=True)
    fromState = Column(String, nullable=False, default="")
    toState = Column(String, nullable=False, default="")
    stageTag = Column(String, nullable=False, default="", index=True)
    remark = Column(Text, nullable=False, default="")
    actorUserId = Column(String, nullable=False, default="", index=True)
    actorRole = Column(String, nullable=False, default="", index=True)
    actorEmail = Column(Text, nullable=False, default="")
    at = Column(Text, nullable=False, default="", index=True)
    correlationId = Column(String, nullable=False, default="", index=True)
    beforeJson = Column(Text, nullable=False, default="")
    afterJson = Column(Text, nullable=False, default="")
    metaJson = Column(Text, nullable=False, default="")


class AtsStage(Base):
    __tablename__ = "ats_stages"
    __table_args__ = (UniqueConstraint("tenantId", "stageKey", name="uq_ats_stages_tenant_stageKey"),)

    stageId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    stageKey = Column(String, nullable=False, default="")  # sent, interview, offer ...
    stageName = Column(Text, nullable=False, default="")
    orderNo = Column(Integer, nullable=False, default=0)
    color = Column(String, nullable=False, default="")
    isActive = Column(Boolean, nullable=False, default=True)
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Candidate(Base):
    __tablename__ = "candidates"

    candidateId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    name = Column(Text, nullable=False, default="")
    email = Column(String, nullable=False, default="", index=True)
    role = Column(Text, nullable=False, default="")
    match = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="Nuevo")
    source = Column(String, nullable=False, default="manual")
    notes = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Vacancy(Base):
    __tablename__ = "vacancies"

    vacancyId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    title = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="open")
    companyId = Column(String, nullable=False, default="")
    companyName = Column(Text, nullable=False, default="")
    location = Column(Text, nullable=False, default="")
    seniority = Column(String, nullable=False, default="")
    employmentType = Column(String, nullable=False, default="")
    salaryMin = Column(Float, nullable=True)
    salaryMax = Column(Float, nullable=True)
    description = Column(Text, nullable=False, default="")
    checklistJson = Column(Text, nullable=False, default="")
    notesJson = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (UniqueConstraint("tenantId", "candidateId", "vacancyId", name="uq_applications_tenant_cand_vac"),)

    applicationId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    candidateId = Column(String, nullable=False, default="", index=True)
    vacancyId = Column(String, nullable=False, default="", index=True)
    status = Column(String, nullable=False, default="sent")
    notes = Column(Text, nullable=False, default="")
    orderNo = Column(Integer, nullable=False, default=0)
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Employee(Base):
    __tablename__ = "employees"

    employeeId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    name = Column(Text, nullable=False, default="")
    email = Column(String, nullable=False, default="")
    role = Column(Text, nullable=False, default="")
    phone = Column(String, nullable=False, default="")
    dni = Column(String, nullable=False, default="")
    cuil = Column(String, nullable=False, default="")
    dateOfBirth = Column(String, nullable=False, default="")
    gender = Column(String, nullable=False, default="")
    maritalStatus = Column(String, nullable=False, default="")
    nationality = Column(String, nullable=False, default="")
    addressJson = Column(Text, nullable=False, default="")
    emergencyContactJson = Column(Text, nullable=False, default="")
    department = Column(String, nullable=False, default="")
    managerId = Column(String, nullable=False, default="", index=True)
    hireDate = Column(String, nullable=False, default="")
    endDate = Column(String, nullable=False, default="")
    baseSalary = Column(Float, nullable=False, default=0)
    monthlyHours = Column(Float, nullable=False, default=160)
    contractType = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="active")
    bankInfoJson = Column(Text, nullable=False, default="")
    healthInsurance = Column(Text, nullable=False, default="")
    taxId = Column(String, nullable=False, default="")
    skillsJson = Column(Text, nullable=False, default="")
    certificationsJson = Column(Text, nullable=False, default="")
    jobHistoryJson = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Attendance(Base):
    __tablename__ = "attendance"
    __table_args__ = (UniqueConstraint("tenantId", "employeeId", "date", name="uq_attendance_tenant_emp_date"),)

    attendanceId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    employeeId = Column(String, nullable=False, default="", index=True)
    employeeName = Column(Text, nullable=False, default="")
    date = Column(String, nullable=False, default="")  # YYYY-MM-DD
    checkIn = Column(Text, nullable=False, default="")
    checkOut = Column(Text, nullable=False, default="")
    breakStart = Column(Text, nullable=False, default="")
    breakEnd = Column(Text, nullable=False, default="")
    breakMinutes = Column(Integer, nullable=False, default=0)
    hoursWorked = Column(Float, nullable=False, default=0)
    regularHours = Column(Float, nullable=False, default=0)
    overtimeHours = Column(Float, nullable=False, default=0)
    checkInLocationJson = Column(Text, nullable=False, default="")
    checkOutLocationJson = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="present")
    lateMinutes = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=False, default="")
    approvedBy = Column(String, nullable=False, default="")
    approvedAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Leave(Base):
    __tablename__ = "leaves"

    leaveId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    employeeId = Column(String, nullable=False, default="", index=True)
    employeeName = Column(Text, nullable=False, default="")
    type = Column(String, nullable=False, default="vacation")
    startDate = Column(String, nullable=False, default="")
    endDate = Column(String, nullable=False, default="")
    days = Column(Float, nullable=False, default=0)
    halfDay = Column(Boolean, nullable=False, default=False)
    reason = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="pending")
    requestedAt = Column(Text, nullable=False, default="")
    approvedBy = Column(String, nullable=False, default="")
    approvedByName = Column(Text, nullable=False, default="")
    approvedAt = Column(Text, nullable=False, default="")
    rejectedReason = Column(Text, nullable=False, default="")
    attachmentsJson = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Payroll(Base):
    __tablename__ = "payrolls"
    __table_args__ = (
        UniqueConstraint("tenantId", "employeeId", "period", name="uq_payrolls_tenant_emp_period"),
    )

    payrollId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    employeeId = Column(String, nullable=False, default="", index=True)
    employeeName = Column(Text, nullable=False, default="")
    period = Column(String, nullable=False, default="")  # YYYY-MM
    type = Column(String, nullable=False, default="mensual")
    status = Column(String, nullable=False, default="pending")
    currency = Column(String, nullable=False, default="ARS")
    baseSalary = Column(Float, nullable=False, default=0)
    bonuses = Column(Float, nullable=False, default=0)
    overtimeHours = Column(Float, nullable=False, default=0)
    overtimeRate = Column(Float, nullable=False, default=0)
    deductions = Column(Float, nullable=False, default=0)
    taxRate = Column(Float, nullable=False, default=0)
    contributionsRate = Column(Float, nullable=False, default=0)
    conceptsJson = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    # Derived totals, recomputed on every write.
    overtimeAmount = Column(Float, nullable=False, default=0)
    grossTotal = Column(Float, nullable=False, default=0)
    nonRemunerativeTotal = Column(Float, nullable=False, default=0)
    conceptsDeductions = Column(Float, nullable=False, default=0)
    taxes = Column(Float, nullable=False, default=0)
    contributions = Column(Float, nullable=False, default=0)
    netTotal = Column(Float, nullable=False, default=0)
    approvedBy = Column(String, nullable=False, default="")
    approvedAt = Column(Text, nullable=False, default="")
    paidAt = Column(Text, nullable=False, default="")
    historyJson = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class EvaluationTemplate(Base):
    __tablename__ = "evaluation_templates"

    templateId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    name = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    type = Column(String, nullable=False, default="annual")
    ratingScaleJson = Column(Text, nullable=False, default="")
    competenciesJson = Column(Text, nullable=False, default="")
    objectivesJson = Column(Text, nullable=False, default="")
    generalQuestionsJson = Column(Text, nullable=False, default="")
    configJson = Column(Text, nullable=False, default="")
    applicableToJson = Column(Text, nullable=False, default="")
    isActive = Column(Boolean, nullable=False, default=True)
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class EvaluationCycle(Base):
    __tablename__ = "evaluation_cycles"

    cycleId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    name = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    templateId = Column(String, nullable=False, default="", index=True)
    startDate = Column(String, nullable=False, default="")
    endDate = Column(String, nullable=False, default="")
    evaluationDeadline = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="draft")
    statsJson = Column(Text, nullable=False, default="")
    launchedAt = Column(Text, nullable=False, default="")
    completedAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Evaluation(Base):
    __tablename__ = "evaluations"
    __table_args__ = (
        UniqueConstraint(
            "tenantId", "cycleId", "evaluatedEmployeeId", "evaluatorId", "evaluatorRole", name="uq_evaluations_assignment"
        ),
    )

    evaluationId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    cycleId = Column(String, nullable=False, default="", index=True)
    templateId = Column(String, nullable=False, default="")
    evaluatedEmployeeId = Column(String, nullable=False, default="", index=True)
    evaluatedName = Column(Text, nullable=False, default="")
    evaluatedDepartment = Column(String, nullable=False, default="")
    evaluatedPosition = Column(Text, nullable=False, default="")
    evaluatorId = Column(String, nullable=False, default="", index=True)
    evaluatorName = Column(Text, nullable=False, default="")
    evaluatorRole = Column(String, nullable=False, default="self")
    competencyRatingsJson = Column(Text, nullable=False, default="")
    objectiveRatingsJson = Column(Text, nullable=False, default="")
    generalAnswersJson = Column(Text, nullable=False, default="")
    overallRating = Column(Float, nullable=True)
    overallComment = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="pending")
    managerReviewJson = Column(Text, nullable=False, default="")
    hrReviewJson = Column(Text, nullable=False, default="")
    dueDate = Column(String, nullable=False, default="")
    startedAt = Column(Text, nullable=False, default="")
    submittedAt = Column(Text, nullable=False, default="")
    completedAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Notification(Base):
    __tablename__ = "notifications"

    notificationId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    userId = Column(String, nullable=False, default="", index=True)
    title = Column(Text, nullable=False, default="")
    message = Column(Text, nullable=False, default="")
    type = Column(String, nullable=False, default="info")
    priority = Column(String, nullable=False, default="normal")
    category = Column(String, nullable=False, default="system")
    actionUrl = Column(Text, nullable=False, default="")
    dataJson = Column(Text, nullable=False, default="")
    isRead = Column(Boolean, nullable=False, default=False)
    readAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")


class Workflow(Base):
    """Sequential approval chain; steps live in stepsJson."""

    __tablename__ = "workflows"

    workflowId = Column(String, primary_key=True)
    tenantId = Column(String, nullable=False, default="", index=True)
    type = Column(String, nullable=False, default="custom")
    name = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    resourceType = Column(String, nullable=False, default="")
    resourceId = Column(String, nullable=False, default="", index=True)
    resourceDataJson = Column(Text, nullable=False, default="")
    requestedBy = Column(String, nullable=False, default="", index=True)
    requestedByName = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="pending", index=True)
    currentStepIndex = Column(Integer, nullable=False, default=0)
    stepsJson = Column(Text, nullable=False, default="")
    priority = Column(String, nullable=False, default="normal")
    startedAt = Column(Text, nullable=False, default="")
    completedAt = Column(Text, nullable=False, default="")
    cancelledAt = Column(Text, nullable=False, default="")
    cancelledBy = Column(String, nullable=False, default="")
    cancellationReason = Column(Text, nullable=False, default="")
    metadataJson = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")
